import pytest

from efxforge.config import ServiceConfig
from efxforge.service import ProjectService
from efxforge.storage import PreferencesStore


class FakeFingerprinter:
    """Fingerprints looked up from a dict; unknown references read as a fixed id."""

    def __init__(self, values=None, default=0xCAFEBABE):
        self.values = dict(values or {})
        self.default = default
        self.calls = []

    def fingerprint(self, audio_ref):
        self.calls.append(audio_ref)
        return self.values.get(audio_ref, self.default)


class MappingResolver:
    """External references resolved from a dict; a missing key means access was revoked."""

    def __init__(self, mapping=None):
        self.mapping = dict(mapping or {})

    def resolve(self, reference):
        return self.mapping[reference]


def _block(directory, project_id):
    # a folder where the artifact file should go makes every write to it fail
    (directory / f"{project_id}.efx").mkdir(parents=True)


@pytest.fixture
def block():
    return _block


@pytest.fixture
def fingerprinter():
    return FakeFingerprinter()


@pytest.fixture
def resolver():
    return MappingResolver()


@pytest.fixture
def preferences(tmp_path):
    return PreferencesStore(tmp_path / "data" / "preferences.json")


@pytest.fixture
def service(tmp_path, fingerprinter, preferences, resolver):
    config = ServiceConfig(data_dir=tmp_path / "data")
    return ProjectService(
        config,
        fingerprinter=fingerprinter,
        preferences=preferences,
        external_resolver=resolver,
    )
