class ServiceError(RuntimeError):
    """An upstream AI service failed or returned something unusable."""
