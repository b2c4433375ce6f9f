import itertools
import random
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from captcha_service.assets import AssetCatalog
from captcha_service.challenge import ChallengeGenerator, Geometry, Verifier
from captcha_service.images import ImageServer
from captcha_service.proof import ProofLedger
from captcha_service.sessions import InMemorySessionStore


def write_png(path: Path, size=(300, 200), color=(30, 120, 200)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="PNG")
    return path


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FixedRandom(random.Random):
    """Random source whose randint() replays the given values in a cycle."""

    def __init__(self, *ints: int):
        super().__init__(0)
        self._ints = itertools.cycle(ints)

    def randint(self, a, b):
        value = next(self._ints)
        assert a <= value <= b, f"{value} outside [{a}, {b}]"
        return value

    def choice(self, seq):
        return seq[0]


@pytest.fixture()
def assets_dir(tmp_path: Path) -> Path:
    """
    Two backgrounds and one puzzle shape:
      image/01.png, image/03.png, puzzle/2.png
    """
    root = tmp_path / "assets"
    write_png(root / "image" / "01.png")
    write_png(root / "image" / "03.png", color=(200, 80, 40))
    write_png(root / "puzzle" / "2.png", size=(60, 60), color=(255, 255, 255))
    return root


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture()
def ledger(clock) -> ProofLedger:
    return ProofLedger(secret="test-secret", clock=clock)


@pytest.fixture()
def generator(assets_dir, store, clock) -> ChallengeGenerator:
    # targetX = 120, targetY = 50 for every challenge
    return ChallengeGenerator(
        AssetCatalog(assets_dir), store, Geometry(), rng=FixedRandom(120, 50), clock=clock
    )


@pytest.fixture()
def verifier(store, ledger) -> Verifier:
    return Verifier(store, Geometry(), proofs=ledger)


@pytest.fixture()
def service(monkeypatch, assets_dir, store, ledger, generator, verifier):
    """The captcha_service app wired to temporary assets and a fake clock."""
    import captcha_service.main as app_module

    catalog = generator.catalog
    monkeypatch.setattr(app_module, "session_store", store)
    monkeypatch.setattr(app_module, "asset_catalog", catalog)
    monkeypatch.setattr(app_module, "proof_ledger", ledger)
    monkeypatch.setattr(app_module, "generator", generator)
    monkeypatch.setattr(app_module, "verifier", verifier)
    monkeypatch.setattr(app_module, "image_server", ImageServer(catalog, store))
    return app_module


@pytest.fixture()
def client(service) -> TestClient:
    return TestClient(service.app)
