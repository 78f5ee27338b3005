from __future__ import annotations

import shutil
from dataclasses import replace
from pathlib import Path

import pytest

from creator_station.pipelines import workspace as ws_mod
from creator_station.pipelines.errors import ResourceError, ValidationError
from creator_station.pipelines.workspace import Workspace, sort_key


def test_workspace_creates_and_removes_tree(settings, render_root: Path):
    with Workspace(settings) as ws:
        root = ws.path("")
        assert root.is_dir()
        assert root.parent == render_root
        assert root.name.startswith("creator-station-")
        (ws.segments_dir / "seg_000.mp4").write_bytes(b"x")
    assert not root.exists()
    assert list(render_root.iterdir()) == []


def test_workspace_cleans_up_on_exception(settings, render_root: Path):
    with pytest.raises(RuntimeError, match="boom"):
        with Workspace(settings) as ws:
            (ws.incoming_dir / "a.png").write_bytes(b"a")
            raise RuntimeError("boom")
    assert list(render_root.iterdir()) == []


def test_workspace_cleanup_failure_does_not_mask_error(settings, monkeypatch):
    """削除の失敗はログのみで、元の例外をそのまま伝える。"""

    def _fail(_path):
        raise PermissionError("denied")

    monkeypatch.setattr(ws_mod.shutil, "rmtree", _fail)
    with pytest.raises(ValueError, match="primary"):
        with Workspace(settings):
            raise ValueError("primary")


def test_workspace_open_failure_is_resource_error(settings, tmp_path: Path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")
    bad = replace(settings, render_tmp_dir=str(blocker / "sub"))
    with pytest.raises(ResourceError):
        with Workspace(bad):
            pass


def test_adopt_moves_uploads_into_workspace(settings, make_upload):
    up = make_upload("scene_01.png")
    original = up.path
    with Workspace(settings) as ws:
        (adopted,) = ws.adopt([up])
        assert adopted.filename == "scene_01.png"
        assert adopted.path.parent == ws.incoming_dir
        assert not original.exists()
    assert not adopted.path.exists()


def test_stage_sorts_by_byte_order(settings, make_upload):
    """大文字は小文字より前（バイト順）、到着順は無関係。"""
    ups = [make_upload(n) for n in ["b.png", "B.png", "a.png", "A.png"]]
    auds = [make_upload(n) for n in ["2.mp3", "1.mp3"]]
    with Workspace(settings) as ws:
        staged = ws.stage(ws.adopt(ups), ws.adopt(auds))
        names = [a.path.read_bytes().decode() for a in staged.images]
        assert names == ["A.png", "B.png", "a.png", "b.png"]
        assert [a.index for a in staged.images] == [0, 1, 2, 3]
        assert all(a.role == "image" for a in staged.images)
        assert [a.path.read_bytes().decode() for a in staged.audios] == ["1.mp3", "2.mp3"]
        assert staged.images[0].path.name == "0000.png"
        assert staged.audios[0].sort_key == sort_key("1.mp3")


def test_stage_zero_padded_names_keep_scene_order(settings, make_upload):
    ups = [make_upload(f"scene_{i:03d}.jpg") for i in (10, 2, 1)]
    with Workspace(settings) as ws:
        staged = ws.stage(ws.adopt(ups))
        assert [a.path.read_bytes().decode() for a in staged.images] == [
            "scene_001.jpg",
            "scene_002.jpg",
            "scene_010.jpg",
        ]


def test_stage_rejects_unpadded_numbers(settings, make_upload):
    ups = [make_upload(n) for n in ["scene_2.png", "scene_10.png"]]
    with Workspace(settings) as ws:
        with pytest.raises(ValidationError) as ei:
            ws.stage(ws.adopt(ups))
    assert ei.value.field == "images"
    assert "zero-pad" in ei.value.constraint


def test_stage_unpadded_numbers_allowed_when_not_strict(settings, make_upload):
    ups = [make_upload(n) for n in ["scene_2.png", "scene_10.png"]]
    with Workspace(replace(settings, strict_scene_order=False)) as ws:
        staged = ws.stage(ws.adopt(ups))
        # バイト順のまま（"scene_10" が先）
        assert staged.images[0].path.read_bytes() == b"scene_10.png"


def test_stage_rejects_duplicate_names(settings, make_upload):
    ups = [make_upload("same.png"), make_upload("same.png")]
    with Workspace(replace(settings, strict_scene_order=False)) as ws:
        with pytest.raises(ValidationError, match="duplicate"):
            ws.stage(ws.adopt(ups))


def test_stage_rejects_colliding_scene_numbers(settings, make_upload):
    ups = [make_upload("a_1.png"), make_upload("b_1.png")]
    with Workspace(settings) as ws:
        with pytest.raises(ValidationError, match="more than once"):
            ws.stage(ws.adopt(ups))


def test_stage_names_without_numbers_are_not_checked(settings, make_upload):
    ups = [make_upload("intro.png"), make_upload("outro.png")]
    with Workspace(settings) as ws:
        staged = ws.stage(ws.adopt(ups))
        assert len(staged.images) == 2


def test_receive_writes_stream(settings):
    from io import BytesIO

    with Workspace(settings) as ws:
        up = ws.receive("clip.PNG", BytesIO(b"payload"))
        assert up.filename == "clip.PNG"
        assert up.path.read_bytes() == b"payload"
        assert up.path.suffix == ".png"
        # incoming に既にあるファイルは adopt で移動しない
        assert ws.adopt([up]) == [up]
    assert not up.path.exists()


def test_receive_and_stage_ignore_unusable_suffix(settings):
    """NUL などを含む拡張子は捨て、番号だけのファイル名で保存する。"""
    from io import BytesIO

    with Workspace(settings) as ws:
        up = ws.receive("scene_001.p\x00ng", BytesIO(b"payload"))
        assert up.path.name == "0000"
        assert up.path.read_bytes() == b"payload"

        staged = ws.stage([up])
        assert staged.images[0].path.name == "0000"
        assert staged.images[0].path.parent.name == "imgs"


@pytest.mark.parametrize(
    "name, expected",
    [("a.PNG", ".png"), ("b.jpeg", ".jpeg"), ("c", ""), ("d.p\x00ng", ""), ("e.m p3", "")],
)
def test_safe_suffix(name, expected):
    assert ws_mod.safe_suffix(name) == expected


def test_cleanup_is_idempotent(settings):
    ws = Workspace(settings).open()
    ws.cleanup()
    ws.cleanup()
    assert ws.root is None


def test_rmtree_missing_tree_is_ignored(settings):
    ws = Workspace(settings).open()
    shutil.rmtree(ws.path(""))
    ws.cleanup()
