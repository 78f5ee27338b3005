from __future__ import annotations

import re
import shutil
import tempfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Literal

from creator_station.config.settings import Settings, get_settings
from creator_station.pipelines.errors import ResourceError, ValidationError
from creator_station.utils.log import log, log_error


AssetRole = Literal["image", "audio"]

_NUMBER_RE = re.compile(r"\d+")
_SUFFIX_RE = re.compile(r"\.[a-z0-9]{1,10}")


@dataclass(frozen=True)
class UploadedFile:
    """
    呼び出し側がアップロードしたファイル。

    Params:
        filename: 元のファイル名（シーン順の決定に使う）
        path: ディスク上の実体
    """
    filename: str
    path: Path


@dataclass(frozen=True)
class StagedAsset:
    path: Path
    sort_key: bytes
    role: AssetRole
    index: int


@dataclass(frozen=True)
class StagedInputs:
    images: list[StagedAsset]
    audios: list[StagedAsset]


def sort_key(filename: str) -> bytes:
    """Byte-wise lexicographic key of an upload's original file name."""
    return filename.encode("utf-8", errors="surrogateescape")


def safe_suffix(filename: str) -> str:
    """元ファイル名の拡張子（小文字）。英数字以外を含む場合は拡張子なしとして扱う。"""
    suffix = Path(filename).suffix.lower()
    return suffix if _SUFFIX_RE.fullmatch(suffix) else ""


def _check_order(role: AssetRole, files: Sequence[UploadedFile], strict: bool) -> None:
    """
    ファイル名から推定したシーン順の妥当性を確認する。

    - 同名ファイルは常にエラー（どちらが先か決まらない）
    - strict の場合、全ファイル名に数字が含まれていれば、最後の数字の大小順が
      バイト順の並びと一致し、かつ重複しないことを要求する（"scene_10" が "scene_2" より前に来る等を検出）
    """
    field = f"{role}s"
    seen: set[str] = set()
    for f in files:
        if f.filename in seen:
            raise ValidationError(field, f"duplicate file name {f.filename!r}")
        seen.add(f.filename)

    if not strict or len(files) < 2:
        return

    numbers: list[int] = []
    for f in files:
        found = _NUMBER_RE.findall(Path(f.filename).stem)
        if not found:
            return
        numbers.append(int(found[-1]))

    for prev, cur, f in zip(numbers, numbers[1:], files[1:]):
        if cur == prev:
            raise ValidationError(field, f"scene number {cur} appears more than once")
        if cur < prev:
            raise ValidationError(
                field,
                f"file name order does not match scene numbers near {f.filename!r}; zero-pad the sequence numbers",
            )


class Workspace:
    """
    1リクエスト専用の一時ディレクトリ。

    `with Workspace(settings) as ws:` の形で使い、抜けるときは成功/失敗に関わらず
    ディレクトリ全体（取り込んだアップロードファイルを含む）を削除する。
    削除の失敗はログに残すだけで、処理結果や元の例外を置き換えない。
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self.root: Path | None = None
        self._adopted = 0

    def __enter__(self) -> "Workspace":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.cleanup()
        return False

    def open(self) -> "Workspace":
        base = self._settings.render_tmp_dir
        try:
            if base:
                Path(base).mkdir(parents=True, exist_ok=True)
            self.root = Path(tempfile.mkdtemp(prefix="creator-station-", dir=base))
            for sub in ("incoming", "imgs", "aud", "segments"):
                (self.root / sub).mkdir()
        except OSError as e:
            self.cleanup()
            raise ResourceError(f"could not allocate render workspace ({e.strerror or e})") from e
        log("[workspace] opened", str(self.root))
        return self

    def _require_root(self) -> Path:
        if self.root is None:
            raise RuntimeError("workspace is not open")
        return self.root

    @property
    def incoming_dir(self) -> Path:
        return self._require_root() / "incoming"

    @property
    def segments_dir(self) -> Path:
        return self._require_root() / "segments"

    def path(self, name: str) -> Path:
        return self._require_root() / name

    def adopt(self, uploads: Iterable[UploadedFile]) -> list[UploadedFile]:
        """
        アップロード済みファイルの所有権を引き取る（ワークスペース内へ移動）。

        以降、ファイルの削除はワークスペースの cleanup が担う。
        """
        root = self._require_root()
        adopted: list[UploadedFile] = []
        for up in uploads:
            src = Path(up.path)
            try:
                if src.parent.resolve() == self.incoming_dir.resolve():
                    adopted.append(up)
                    continue
                dest = self.incoming_dir / f"{self._adopted:04d}_{src.name}"
                shutil.move(str(src), dest)
                self._adopted += 1
            except OSError as e:
                raise ResourceError(f"could not take ownership of upload ({e.strerror or e})") from e
            adopted.append(UploadedFile(filename=up.filename, path=dest))
        log("[workspace] adopted", len(adopted), "uploads into", str(root))
        return adopted

    def receive(self, filename: str, stream: BinaryIO) -> UploadedFile:
        """Write an incoming upload stream straight into the workspace."""
        dest = self.incoming_dir / f"{self._adopted:04d}{safe_suffix(filename)}"
        try:
            with open(dest, "wb") as fh:
                shutil.copyfileobj(stream, fh)
        except OSError as e:
            raise ResourceError(f"could not store upload ({e.strerror or e})") from e
        self._adopted += 1
        return UploadedFile(filename=filename, path=dest)

    def stage(
        self,
        images: Sequence[UploadedFile],
        audios: Sequence[UploadedFile] = (),
    ) -> StagedInputs:
        """
        画像/音声をそれぞれ元ファイル名のバイト順で並べ替え、imgs/ と aud/ に配置する。

        このソートがシーン順を決める唯一の仕組み。
        """
        root = self._require_root()
        return StagedInputs(
            images=self._stage_role("image", images, root / "imgs"),
            audios=self._stage_role("audio", audios, root / "aud"),
        )

    def _stage_role(self, role: AssetRole, files: Sequence[UploadedFile], dest_dir: Path) -> list[StagedAsset]:
        ordered = sorted(files, key=lambda f: sort_key(f.filename))
        _check_order(role, ordered, self._settings.strict_scene_order)

        staged: list[StagedAsset] = []
        for idx, f in enumerate(ordered):
            suffix = safe_suffix(f.filename)
            dest = dest_dir / f"{idx:04d}{suffix}"
            try:
                shutil.move(str(f.path), dest)
            except OSError as e:
                raise ResourceError(f"could not stage {role} file ({e.strerror or e})") from e
            staged.append(StagedAsset(path=dest, sort_key=sort_key(f.filename), role=role, index=idx))
        return staged

    def cleanup(self) -> None:
        if self.root is None:
            return
        root, self.root = self.root, None
        try:
            shutil.rmtree(root)
            log("[workspace] removed", str(root))
        except FileNotFoundError:
            pass
        except OSError as e:
            log_error("[workspace] cleanup failed:", str(root), repr(e))
