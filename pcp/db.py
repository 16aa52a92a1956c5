"""Database models and helper functions for the PCP store."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from os import getenv
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from dotenv import load_dotenv
from sqlalchemy import (
    DateTime,
    Float,
    Integer,
    JSON,
    String,
    create_engine,
    event,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from pcp.errors import ConcurrentWriteError, ValidationError
from pcp.models import (
    PROCESSADO_NAO,
    PROCESSADO_SIM,
    SHIFT_KEYS,
    DailyProductionDocument,
    MonthlyGoalConfig,
    ProcessamentoResult,
    ShiftEntry,
    shift_number,
)
from pcp.utils.date_helpers import parse_date_key
from pcp.utils.logger import get_logger
from pcp.utils.normalization import normalize_code, parse_decimal

ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / "data"
DB_PATH = DATA_DIR / "pcp.db"

load_dotenv(dotenv_path=ROOT / ".env", override=False)

LOG = get_logger("db")

CONFIG_KEY = "pcp"


class Base(DeclarativeBase):
    """Base declarativa com suporte ao SQLAlchemy 2.0."""


class TimestampMixin:
    """Mixin para carimbos de criação/atualização."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ProducaoDiaria(TimestampMixin, Base):
    """Documento de produção de um dia (coleção PCP, chave YYYY-MM-DD)."""

    __tablename__ = "producao_diaria"

    date_key: Mapped[str] = mapped_column(String(10), primary_key=True)
    turno_1: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON)
    turno_2: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON)
    processado: Mapped[str] = mapped_column(String(3), default=PROCESSADO_NAO, index=True)
    processamento: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Produto(TimestampMixin, Base):
    """Catálogo de produtos (somente o necessário para classificar a produção)."""

    __tablename__ = "produtos"

    codigo: Mapped[str] = mapped_column(String(60), primary_key=True)
    descricao_produto: Mapped[Optional[str]] = mapped_column(String(255))
    classificacao: Mapped[Optional[str]] = mapped_column(String(120), index=True)


class ConfigSistema(Base):
    """Parâmetros de produção editados na tela de metas."""

    __tablename__ = "config_sistema"

    chave: Mapped[str] = mapped_column(String(60), primary_key=True)
    meta_minima_mensal: Mapped[float] = mapped_column(Float, default=0.0)
    dias_uteis_mes: Mapped[int] = mapped_column(Integer, default=0)
    meta_diaria_global: Mapped[float] = mapped_column(Float, default=125000.0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class MetaClassificacao(TimestampMixin, Base):
    """Meta editada manualmente para uma classificação."""

    __tablename__ = "metas_classificacao"

    classificacao: Mapped[str] = mapped_column(String(120), primary_key=True)
    meta_kg: Mapped[float] = mapped_column(Float)


_engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker[Session]] = None


def _resolve_db_url() -> str:
    db_url = getenv("DB_URL")
    if db_url:
        return db_url
    return f"sqlite:///{DB_PATH}"


@event.listens_for(Engine, "connect")
def _sqlite_pragma(dbapi_connection, connection_record) -> None:  # pragma: no cover
    """Configurações adicionais para SQLite."""
    if type(dbapi_connection).__module__.split(".")[0] != "sqlite3":
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        db_url = _resolve_db_url()
        if db_url.startswith("sqlite:///") and db_url == f"sqlite:///{DB_PATH}":
            DATA_DIR.mkdir(parents=True, exist_ok=True)
        connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
        _engine = create_engine(db_url, future=True, pool_pre_ping=True, connect_args=connect_args)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global SessionLocal
    if SessionLocal is None:
        SessionLocal = sessionmaker(bind=get_engine(), class_=Session, expire_on_commit=False, future=True)
    return SessionLocal


def reset_engine() -> None:
    """Descarta engine e fábrica de sessões (troca de DB_URL, testes)."""
    global _engine, SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    SessionLocal = None


def init_db() -> None:
    Base.metadata.create_all(get_engine())


@contextmanager
def session_scope() -> Iterable[Session]:
    """Context manager para lidar com commits/rollback automaticamente."""

    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Session:
    return get_session_factory()()


def ensure_database() -> None:
    try:
        init_db()
    except SQLAlchemyError as exc:
        LOG.error("Erro ao inicializar banco: %s", exc)
        raise


# ---------------------------------------------------------------------------
# Documentos diários
# ---------------------------------------------------------------------------


def _checked_key(date_key: str) -> str:
    try:
        return parse_date_key(date_key).strftime("%Y-%m-%d")
    except ValueError as exc:
        raise ValidationError(str(exc), date_key=date_key) from exc


def row_to_document(row: ProducaoDiaria) -> DailyProductionDocument:
    payload = {
        SHIFT_KEYS["1"]: row.turno_1 or [],
        SHIFT_KEYS["2"]: row.turno_2 or [],
        "processado": row.processado,
        "Processamento": row.processamento,
    }
    return DailyProductionDocument.from_payload(row.date_key, payload, version=row.version or 0)


def load_document(session: Session, date_key: str) -> Optional[DailyProductionDocument]:
    row = session.get(ProducaoDiaria, _checked_key(date_key))
    if row is None:
        return None
    return row_to_document(row)


def _get_or_create_row(session: Session, date_key: str) -> ProducaoDiaria:
    key = _checked_key(date_key)
    row = session.get(ProducaoDiaria, key)
    if row is None:
        row = ProducaoDiaria(date_key=key, turno_1=[], turno_2=[], processado=PROCESSADO_NAO, version=0)
        session.add(row)
    return row


def _reset_processing(row: ProducaoDiaria) -> None:
    row.processado = PROCESSADO_NAO
    row.processamento = None
    row.version = (row.version or 0) + 1


def replace_shift(
    session: Session,
    date_key: str,
    turno: Any,
    rows: Iterable[Dict[str, Any]],
) -> DailyProductionDocument:
    """Substitui (não mescla) todos os lançamentos de um turno, como na importação."""

    number = shift_number(turno)
    entries = [ShiftEntry.from_payload(item) for item in rows]
    row = _get_or_create_row(session, date_key)
    payload = [entry.to_payload() for entry in entries]
    if number == "1":
        row.turno_1 = payload
    else:
        row.turno_2 = payload
    _reset_processing(row)
    session.flush()
    return row_to_document(row)


def set_planned(
    session: Session,
    date_key: str,
    turno: Any,
    codigo: str,
    planejamento: Any,
) -> DailyProductionDocument:
    """Atualiza o planejamento (kg) de um produto em um turno."""

    number = shift_number(turno)
    try:
        planned = parse_decimal(planejamento)
    except ValueError as exc:
        raise ValidationError(str(exc), date_key=date_key) from exc
    if planned < 0:
        raise ValidationError(f"planejamento negativo: {planejamento!r}", date_key=date_key)

    row = session.get(ProducaoDiaria, _checked_key(date_key))
    if row is None:
        raise ValidationError("documento de produção inexistente", date_key=date_key)

    current = list((row.turno_1 if number == "1" else row.turno_2) or [])
    target = normalize_code(codigo)
    updated = False
    for index, item in enumerate(current):
        if normalize_code(item.get("codigo")) == target:
            current[index] = {**item, "planejamento": float(planned)}
            updated = True
    if not updated:
        raise ValidationError(f"produto {codigo} não encontrado no turno {number}", date_key=date_key)

    if number == "1":
        row.turno_1 = current
    else:
        row.turno_2 = current
    _reset_processing(row)
    session.flush()
    return row_to_document(row)


def list_unprocessed_rows(session: Session, *, exclude: Optional[str] = None) -> List[ProducaoDiaria]:
    """Linhas com ``processado != sim``; a conversão fica com quem chama."""
    stmt = select(ProducaoDiaria).where(
        or_(ProducaoDiaria.processado != PROCESSADO_SIM, ProducaoDiaria.processado.is_(None))
    )
    if exclude:
        stmt = stmt.where(ProducaoDiaria.date_key != exclude)
    stmt = stmt.order_by(ProducaoDiaria.date_key.asc())
    return list(session.execute(stmt).scalars())


def list_processed(
    session: Session,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[DailyProductionDocument]:
    stmt = select(ProducaoDiaria).where(ProducaoDiaria.processado == PROCESSADO_SIM)
    if start:
        stmt = stmt.where(ProducaoDiaria.date_key >= _checked_key(start))
    if end:
        stmt = stmt.where(ProducaoDiaria.date_key <= _checked_key(end))
    stmt = stmt.order_by(ProducaoDiaria.date_key.asc())
    return [row_to_document(row) for row in session.execute(stmt).scalars()]


def count_documents(session: Session) -> int:
    return session.execute(select(func.count(ProducaoDiaria.date_key))).scalar_one()


def save_processamento(
    session: Session,
    date_key: str,
    result: ProcessamentoResult,
    *,
    expected_version: int,
) -> int:
    """Grava o agregado e marca a data como processada.

    A escrita só acontece se a versão do documento ainda for ``expected_version``.
    Devolve a nova versão.
    """

    key = _checked_key(date_key)
    new_version = expected_version + 1
    session.flush()
    stmt = (
        update(ProducaoDiaria)
        .where(
            ProducaoDiaria.date_key == key,
            ProducaoDiaria.version == expected_version,
        )
        .values(
            processamento=result.to_payload(),
            processado=PROCESSADO_SIM,
            version=new_version,
        )
        .execution_options(synchronize_session=False)
    )
    outcome = session.execute(stmt)
    if outcome.rowcount != 1:
        raise ConcurrentWriteError(
            "documento alterado durante o processamento; recarregue e tente novamente",
            date_key=date_key,
        )
    row = session.get(ProducaoDiaria, key)
    if row is not None:
        session.refresh(row)
    return new_version


# ---------------------------------------------------------------------------
# Configuração, produtos e metas
# ---------------------------------------------------------------------------


def _env_default(name: str, fallback: str) -> str:
    value = getenv(name)
    return value if value not in (None, "") else fallback


def default_config() -> MonthlyGoalConfig:
    return MonthlyGoalConfig.from_payload(
        {
            "meta_minima_mensal": _env_default("PCP_META_MINIMA_MENSAL", "0"),
            "dias_uteis_mes": _env_default("PCP_DIAS_UTEIS_MES", "0"),
            "meta_diaria_global": _env_default("PCP_META_DIARIA_GLOBAL", "125000"),
        }
    )


def get_config(session: Session) -> MonthlyGoalConfig:
    row = session.get(ConfigSistema, CONFIG_KEY)
    if row is None:
        return default_config()
    return MonthlyGoalConfig.from_payload(
        {
            "meta_minima_mensal": row.meta_minima_mensal,
            "dias_uteis_mes": row.dias_uteis_mes,
            "meta_diaria_global": row.meta_diaria_global,
        }
    )


def save_config(session: Session, payload: Dict[str, Any]) -> MonthlyGoalConfig:
    current = get_config(session).to_payload()
    merged = {**current, **{k: v for k, v in payload.items() if v is not None}}
    config = MonthlyGoalConfig.from_payload(merged)

    row = session.get(ConfigSistema, CONFIG_KEY)
    if row is None:
        row = ConfigSistema(chave=CONFIG_KEY)
        session.add(row)
    row.meta_minima_mensal = float(config.meta_minima_mensal)
    row.dias_uteis_mes = config.dias_uteis_mes
    row.meta_diaria_global = float(config.meta_diaria_global)
    session.flush()
    return config


def upsert_produto(session: Session, payload: Dict[str, Any]) -> Produto:
    codigo = normalize_code(payload.get("codigo"))
    if not codigo:
        raise ValidationError("codigo obrigatório para produto")

    produto = session.get(Produto, codigo)
    if produto is None:
        produto = Produto(codigo=codigo)
        session.add(produto)

    produto.descricao_produto = payload.get("descricao_produto") or produto.descricao_produto
    classificacao = (payload.get("classificacao") or "").strip()
    produto.classificacao = classificacao or produto.classificacao
    session.flush()
    return produto


def bulk_upsert_produtos(session: Session, rows: Iterable[Dict[str, Any]]) -> int:
    count = 0
    for row in rows:
        try:
            upsert_produto(session, row)
            count += 1
        except ValidationError as exc:
            LOG.warning("Falha ao upsert produto: %s", exc.message)
    session.flush()
    return count


def product_classifications(session: Session) -> Dict[str, str]:
    """Mapa código normalizado -> classificação (somente produtos classificados)."""
    rows = session.execute(select(Produto).where(Produto.classificacao.is_not(None))).scalars()
    return {row.codigo: row.classificacao for row in rows if (row.classificacao or "").strip()}


def get_classification_overrides(session: Session) -> Dict[str, Decimal]:
    rows = session.execute(select(MetaClassificacao)).scalars()
    return {row.classificacao: parse_decimal(row.meta_kg) for row in rows}


def save_classification_override(session: Session, classificacao: str, meta_kg: Any) -> Decimal:
    name = (classificacao or "").strip()
    if not name:
        raise ValidationError("classificação obrigatória")
    try:
        value = parse_decimal(meta_kg)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if value < 0:
        raise ValidationError(f"meta negativa para {name}: {meta_kg!r}")

    row = session.get(MetaClassificacao, name)
    if row is None:
        row = MetaClassificacao(classificacao=name, meta_kg=float(value))
        session.add(row)
    else:
        row.meta_kg = float(value)
    session.flush()
    return value


def clear_classification_override(session: Session, classificacao: str) -> bool:
    row = session.get(MetaClassificacao, (classificacao or "").strip())
    if row is None:
        return False
    session.delete(row)
    session.flush()
    return True
