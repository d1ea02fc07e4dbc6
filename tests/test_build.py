from __future__ import annotations

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from PIL import Image

from imgpipe_cli.build import ImageBuild, TransformScheduler
from imgpipe_cli.config import ImagesConfig
from imgpipe_cli.errors import (
    BackendFailure,
    MissingDimensionError,
    UnsupportedInputFormatError,
    UnsupportedOutputFormatError,
)
from imgpipe_cli.metadata import local_source
from imgpipe_cli.registry import AssetRegistry
from imgpipe_cli.services.base import ImageService
from imgpipe_cli.services.passthrough import PassthroughService
from imgpipe_cli.services.pillow import PillowService
from imgpipe_cli.types import RemoteSource, ResolvedTransform, TransformRequest


class CountingService(ImageService):
    def __init__(self, fail_formats: tuple[str, ...] = (), fail_times: int = 0):
        self.calls = 0
        self._lock = threading.Lock()
        self._fail_formats = fail_formats
        self._fail_times = fail_times

    @property
    def service_id(self) -> str:
        return "counting"

    @property
    def supported_input_formats(self) -> tuple[str, ...]:
        return ("png",)

    @property
    def supported_output_formats(self) -> tuple[str, ...]:
        return ("avif", "webp", "png")

    def supports_quality(self, fmt: str) -> bool:
        return fmt != "png"

    def is_valid_quality(self, quality, fmt: str) -> bool:
        return True

    def transform(self, source: bytes, resolved: ResolvedTransform) -> bytes:
        with self._lock:
            self.calls += 1
            call = self.calls
        time.sleep(0.01)
        if resolved.format in self._fail_formats or call <= self._fail_times:
            raise RuntimeError("encoder exploded")
        return f"{resolved.width}x{resolved.height}.{resolved.format}".encode()


def write_png(path: Path, size: tuple[int, int] = (1600, 900)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, (10, 20, 30)).save(path)
    return path


class TestGetImage:
    def test_resolves_and_registers(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "src" / "hero.png"))
        with ImageBuild(CountingService(), out_dir=tmp_path / "dist") as build:
            image = build.get_image(TransformRequest(source=source, width=800))
            assert (image.width, image.height, image.format) == (800, 450, "webp")
            assert image.attributes["width"] == 800
            assert image.attributes["height"] == 450
            assert image.src.startswith("/_images/hero_")
            assert build.registry.lookup(image.fingerprint).output_path == image.src

    def test_normalization_errors_propagate(self, tmp_path: Path) -> None:
        with ImageBuild(CountingService(), out_dir=tmp_path) as build:
            with pytest.raises(MissingDimensionError):
                build.get_image(TransformRequest(source=RemoteSource("https://example.com/a.png"), width=10))
            assert len(build.registry) == 0

    def test_negotiation_errors_propagate(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        with ImageBuild(CountingService(), out_dir=tmp_path) as build:
            with pytest.raises(UnsupportedOutputFormatError):
                build.get_image(TransformRequest(source=source, format="gif"))

    def test_remote_passthrough_by_default(self, tmp_path: Path) -> None:
        url = "https://example.com/cat.jpg"
        with ImageBuild(CountingService(), out_dir=tmp_path) as build:
            image = build.get_image(TransformRequest(source=RemoteSource(url), width=450, height=300))
            assert image.src == url
            assert image.fingerprint is None
            assert len(build.registry) == 0

    def test_remote_optimized_with_reader(self, tmp_path: Path) -> None:
        url = "https://example.com/cat.jpg"
        config = ImagesConfig(optimize_remote=True)
        service = CountingService()
        with ImageBuild(service, config=config, out_dir=tmp_path, reader=lambda src: b"remote") as build:
            image = build.get_image(TransformRequest(source=RemoteSource(url), width=450, height=300))
            result = build.write_all()
        assert image.src.startswith("/_images/cat_")
        assert result.written == [image.src]

    def test_concurrent_identical_requests_transform_once(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        service = CountingService()
        n = 16
        barrier = threading.Barrier(n)

        with ImageBuild(service, out_dir=tmp_path / "dist") as build:
            def worker(_):
                barrier.wait()
                return build.get_image(TransformRequest(source=source, width=800, format="avif"))

            with ThreadPoolExecutor(max_workers=n) as pool:
                images = list(pool.map(worker, range(n)))
            result = build.write_all()
            assert len(build.registry) == 1

        assert len({image.src for image in images}) == 1
        assert service.calls == 1
        assert result.written == [images[0].src]

    def test_context_exit_resets_registry(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        registry = AssetRegistry()
        with ImageBuild(CountingService(), registry=registry, out_dir=tmp_path) as build:
            build.get_image(TransformRequest(source=source))
            assert len(registry) == 1
        assert len(registry) == 0


class TestWriteAll:
    def test_writes_outputs_sidecars_and_asset_map(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        out_dir = tmp_path / "dist"
        with ImageBuild(CountingService(), out_dir=out_dir) as build:
            image = build.get_image(TransformRequest(source=source, width=800, quality="high"))
            result = build.write_all()

        assert result.ok
        target = out_dir / image.src.lstrip("/")
        assert target.read_bytes() == b"800x450.webp"

        sidecar = json.loads(target.with_suffix(target.suffix + ".json").read_text())
        assert sidecar["fingerprint"] == image.fingerprint
        assert sidecar["service_id"] == "counting"
        assert sidecar["options"]["quality"] == "high"

        asset_map = json.loads(result.asset_map.read_text())
        assert asset_map[image.src]["options"]["width"] == 800

        log_lines = (out_dir / "logs" / "images.jsonl").read_text().strip().splitlines()
        assert len(log_lines) == 1
        assert json.loads(log_lines[0])["output_path"] == image.src

    def test_second_build_hits_cache(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        out_dir = tmp_path / "dist"
        request = TransformRequest(source=source, width=400)

        with ImageBuild(CountingService(), out_dir=out_dir) as build:
            build.get_image(request)
            build.write_all()

        service = CountingService()
        with ImageBuild(service, out_dir=out_dir) as build:
            image = build.get_image(request)
            result = build.write_all()

        assert result.skipped == [image.src]
        assert result.written == []
        assert service.calls == 0

    def test_force_ignores_cache(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        out_dir = tmp_path / "dist"
        request = TransformRequest(source=source, width=400)

        with ImageBuild(CountingService(), out_dir=out_dir) as build:
            build.get_image(request)
            build.write_all()

        service = CountingService()
        with ImageBuild(service, out_dir=out_dir, force=True) as build:
            build.get_image(request)
            result = build.write_all()

        assert len(result.written) == 1
        assert service.calls == 1

    def test_backend_failure_is_per_asset(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        out_dir = tmp_path / "dist"
        with ImageBuild(CountingService(fail_formats=("avif",)), out_dir=out_dir) as build:
            bad = build.get_image(TransformRequest(source=source, format="avif"))
            good = build.get_image(TransformRequest(source=source, format="png"))
            result = build.write_all()

        assert not result.ok
        assert result.written == [good.src]
        assert [path for path, _ in result.errors] == [bad.src]
        assert "encoder exploded" in result.errors[0][1]
        assert not (out_dir / bad.src.lstrip("/")).exists()

    def test_passthrough_copies_bytes(self, tmp_path: Path) -> None:
        path = write_png(tmp_path / "hero.png")
        out_dir = tmp_path / "dist"
        with ImageBuild(PassthroughService(), out_dir=out_dir) as build:
            image = build.get_image(TransformRequest(source=local_source(path), format="png"))
            build.write_all()
        assert (out_dir / image.src.lstrip("/")).read_bytes() == path.read_bytes()

    def test_edited_source_is_rebuilt(self, tmp_path: Path) -> None:
        path = write_png(tmp_path / "hero.png", size=(120, 80))
        out_dir = tmp_path / "dist"
        request = TransformRequest(source=local_source(path), format="png")

        with ImageBuild(PassthroughService(), out_dir=out_dir) as build:
            build.get_image(request)
            build.write_all()

        # Same dimensions and format, so the fingerprint is unchanged.
        Image.new("RGB", (120, 80), (200, 0, 0)).save(path)
        with ImageBuild(PassthroughService(), out_dir=out_dir) as build:
            image = build.get_image(TransformRequest(source=local_source(path), format="png"))
            result = build.write_all()

        assert result.written == [image.src]
        assert result.skipped == []
        assert (out_dir / image.src.lstrip("/")).read_bytes() == path.read_bytes()

    def test_switching_service_rebuilds(self, tmp_path: Path) -> None:
        path = write_png(tmp_path / "hero.png", size=(120, 80))
        out_dir = tmp_path / "dist"
        request = TransformRequest(source=local_source(path), format="png")

        with ImageBuild(PassthroughService(), out_dir=out_dir) as build:
            build.get_image(request)
            build.write_all()

        service = CountingService()
        with ImageBuild(service, out_dir=out_dir) as build:
            image = build.get_image(request)
            result = build.write_all()

        assert result.written == [image.src]
        assert service.calls == 1
        assert (out_dir / image.src.lstrip("/")).read_bytes() == b"120x80.png"

    def test_write_failure_is_per_asset(self, tmp_path: Path) -> None:
        source = local_source(write_png(tmp_path / "hero.png"))
        out_dir = tmp_path / "dist"
        out_dir.mkdir()
        # A regular file where a directory is needed.
        (out_dir / "blocked").write_text("not a directory")

        def assign(resolved, fingerprint):
            if resolved.width == 10:
                return "/blocked/hero.png"
            return "/_images/hero.png"

        registry = AssetRegistry(assign_path=assign)
        with ImageBuild(CountingService(), registry=registry, out_dir=out_dir) as build:
            build.get_image(TransformRequest(source=source, width=10, format="png"))
            build.get_image(TransformRequest(source=source, width=20, format="png"))
            result = build.write_all()

        assert result.written == ["/_images/hero.png"]
        assert [path for path, _ in result.errors] == ["/blocked/hero.png"]
        assert result.errors[0][1].startswith("write failed")
        assert (out_dir / "_images" / "hero.png").read_bytes() == b"20x11.png"
        assert result.asset_map.exists()

    def test_svg_to_raster_with_pillow_fails_up_front(self, tmp_path: Path) -> None:
        svg = tmp_path / "logo.svg"
        svg.write_text('<svg xmlns="http://www.w3.org/2000/svg" width="64" height="32"></svg>')
        with ImageBuild(PillowService(), out_dir=tmp_path / "dist") as build:
            with pytest.raises(UnsupportedInputFormatError):
                build.get_image(TransformRequest(source=local_source(svg), format="png"))
            assert len(build.registry) == 0
            image = build.get_image(TransformRequest(source=local_source(svg)))
            assert image.format == "svg"


class TestTransformScheduler:
    def _entry(self, tmp_path: Path):
        source = local_source(write_png(tmp_path / "hero.png"))
        registry = AssetRegistry()
        entry, _ = registry.register_entry(
            ResolvedTransform(source=source, width=10, height=10, format="webp")
        )
        return entry

    def test_failed_fingerprint_is_retried(self, tmp_path: Path) -> None:
        entry = self._entry(tmp_path)
        service = CountingService(fail_times=1)
        scheduler = TransformScheduler(service, lambda src: b"src")
        try:
            first = scheduler.submit(entry)
            with pytest.raises(BackendFailure):
                first.result()
            second = scheduler.submit(entry)
            assert second is not first
            assert second.result().data == b"10x10.webp"
            assert scheduler.submit(entry) is second
        finally:
            scheduler.shutdown()
        assert service.calls == 2

    def test_reader_errors_become_unreadable_source(self, tmp_path: Path) -> None:
        from imgpipe_cli.errors import UnreadableSourceError

        entry = self._entry(tmp_path)

        def reader(_src):
            raise OSError("disk on fire")

        scheduler = TransformScheduler(CountingService(), reader)
        try:
            with pytest.raises(UnreadableSourceError):
                scheduler.submit(entry).result()
        finally:
            scheduler.shutdown()
