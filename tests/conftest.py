from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
import sys

import pytest
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from perfportal.core.log_buffer import reset_buffers  # noqa: E402
from perfportal.core.metrics import metrics  # noqa: E402

from perfportal.db import models  # noqa: F401, E402 - ensure models are imported for metadata


CSV_HEADER = (
    "timeStamp,elapsed,label,responseCode,responseMessage,threadName,dataType,success,"
    "failureMessage,bytes,sentBytes,grpThreads,allThreads,URL,Latency,IdleTime,Connect"
)

CSV_ROWS = [
    "1700000000000,100,Login,200,OK,T1,text,true,,1024,200,1,1,http://example/login,50,0,10",
    "1700000000500,300,Login,200,OK,T1,text,true,,1024,200,1,1,http://example/login,150,0,20",
    "1700000001000,200,Search,500,Internal Server Error,T2,text,false,boom,512,100,1,1,http://example/search,80,0,5",
    "1700000002000,400,Search,200,OK,T2,text,true,,512,100,1,1,http://example/search,120,0,",
]

XML_JTL = """<?xml version="1.0" encoding="UTF-8"?>
<testResults version="1.2">
<httpSample t="100" lt="50" ct="10" ts="1700000000000" s="true" lb="Login" rc="200" rm="OK" tn="T1" by="1024" sby="200"/>
<sample t="250" lt="0" ts="1700000001000" s="false" lb="Checkout" rc="500" rm="Error" tn="T1" by="2048" sby="300">
  <httpSample t="120" ts="1700000001000" s="true" lb="Checkout - step 1" rc="200"/>
  <httpSample t="130" ts="1700000001100" s="false" lb="Checkout - step 2" rc="500"/>
</sample>
</testResults>
"""


def csv_jtl(*rows: str) -> str:
    """Build a CSV JTL document; defaults to the four-row sample."""

    body = rows or tuple(CSV_ROWS)
    return "\n".join((CSV_HEADER, *body)) + "\n"


@pytest.fixture()
def write_jtl(tmp_path: Path) -> Callable[..., Path]:
    def _write(content: str | bytes, name: str = "results.jtl") -> Path:
        path = tmp_path / name
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return path

    return _write


@pytest.fixture()
def session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def reset_processing_metrics():
    metrics.reset()
    reset_buffers()
    yield
    metrics.reset()
    reset_buffers()


@pytest.fixture()
def make_csv() -> Callable[..., str]:
    return csv_jtl


@pytest.fixture()
def xml_jtl() -> str:
    return XML_JTL
