import gzip
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from varannot.annotation.invoker import AnnotatorCommand, InputMode, OutputMode
from varannot.db.models import Base
from varannot.models import VariantRecord

MOCK_VEP = Path(__file__).parent / "fixtures" / "mock_vep.py"

# Use SQLite for tests -- fast, no server needed
TEST_DATABASE_URL = "sqlite://"


@pytest.fixture()
def session_factory():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def variant() -> VariantRecord:
    return VariantRecord(chromosome="20", start=60343, end=60343, reference="G", alternate="A")


def _mock_engine(
    *extra: str,
    input_mode: InputMode = InputMode.PATH,
    output_mode: OutputMode = OutputMode.FILE,
) -> AnnotatorCommand:
    """Command running tests/fixtures/mock_vep.py with the wiring requested."""
    argv = [sys.executable, str(MOCK_VEP)]
    if input_mode == InputMode.PATH:
        argv += ["-i", "{input}"]
    argv += ["-o", "STDOUT" if output_mode == OutputMode.STDOUT else "{output}"]
    argv += list(extra)
    return AnnotatorCommand(argv=argv, input_mode=input_mode, output_mode=output_mode)


def _read_gzip_lines(path: Path) -> list[str]:
    with gzip.open(path, "rt") as fh:
        return fh.read().splitlines()


def _write_gzip_text(path: Path, text: str) -> Path:
    with gzip.open(path, "wt") as fh:
        fh.write(text)
    return path


@pytest.fixture()
def mock_engine():
    return _mock_engine


@pytest.fixture()
def read_gzip_lines():
    return _read_gzip_lines


@pytest.fixture()
def write_gzip_text():
    return _write_gzip_text
