from __future__ import annotations

import os

import uvicorn

from creator_station.utils.env import env_truthy


def main():
    port = int(os.getenv("PORT", "8080"))
    # 開発時のみ UVICORN_RELOAD=1 でホットリロード
    reload = env_truthy("UVICORN_RELOAD", "0")
    uvicorn.run(
        "creator_station.api.server:app",
        host="0.0.0.0",
        port=port,
        reload=reload,
        # レンダリングは同期処理のため、ワーカー数は環境変数で調整
        workers=None if reload else int(os.getenv("WEB_CONCURRENCY", "1")),
    )


if __name__ == "__main__":
    main()
