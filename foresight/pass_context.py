"""
Pass Context - Pass-ID Tracing + Structured Logging.

Jeder Analyse- bzw. Regenerierungs-Pass bekommt eine eindeutige ID die
durch alle Log-Eintraege propagiert wird. So lassen sich Pattern-Funde,
Konflikte und ausgeloeste Vorbereitungen einem Durchlauf zuordnen.
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar

# ContextVar fuer Pass-ID (thread-safe, asyncio-kompatibel)
_pass_id_var: ContextVar[str] = ContextVar("pass_id", default="")


def get_pass_id() -> str:
    """Gibt die aktuelle Pass-ID zurueck (leer ausserhalb eines Passes)."""
    return _pass_id_var.get()


@contextmanager
def analysis_pass(name: str):
    """Markiert einen Durchlauf; verschachtelte Passes behalten die aeussere ID."""
    if _pass_id_var.get():
        yield _pass_id_var.get()
        return
    pass_id = f"{name}-{uuid.uuid4().hex[:8]}"
    token = _pass_id_var.set(pass_id)
    try:
        yield pass_id
    finally:
        _pass_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """Log-Formatter der die Pass-ID voranstellt.

    Output-Format:
        12:34:56 [foresight.pattern_engine] INFO: [pass-full-ab12cd34] Message
    """

    def format(self, record: logging.LogRecord) -> str:
        pass_id = _pass_id_var.get()
        record.pass_id = f"[pass-{pass_id}] " if pass_id else ""
        return super().format(record)


def setup_structured_logging(level: str = "INFO") -> None:
    """Konfiguriert Structured Logging fuer die gesamte Anwendung."""
    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(pass_id)s%(message)s"
    formatter = StructuredFormatter(fmt=fmt, datefmt="%H:%M:%S")

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root.handlers:
        handler.setFormatter(formatter)

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        root.addHandler(handler)
