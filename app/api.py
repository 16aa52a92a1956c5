"""FastAPI application exposing the PCP processing actions."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pcp.db import (
    bulk_upsert_produtos,
    clear_classification_override,
    count_documents,
    get_config,
    get_session,
    load_document,
    replace_shift,
    save_classification_override,
    save_config,
    session_scope,
    set_planned,
)
from pcp.errors import Err, ValidationError
from pcp.models import DailyProductionDocument
from pcp.pipeline import (
    calcular_processamento,
    ensure_environment,
    listar_pendentes,
    processar_pendentes,
    projetar_metas,
    propor_processamento,
    trigger_scheduled,
)
from pcp.utils.logger import get_logger
from pcp.utils.normalization import format_br

LOG = get_logger("api")

ERROR_STATUS = {
    "entrada_invalida": 422,
    "sem_dados": 404,
    "confirmacao_necessaria": 409,
    "datas_pendentes": 409,
    "em_andamento": 409,
    "conflito_versao": 409,
    "falha_persistencia": 500,
}


def get_db() -> Iterable[Session]:
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def error_response(err: Err) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(err.kind, 400),
        content={"error": err.kind, "message": err.message, "details": err.details},
    )


def _validation(exc: ValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail=exc.message)


def serialize_document(document: DailyProductionDocument) -> Dict[str, Any]:
    payload = document.to_payload()
    payload["date_key"] = document.date_key
    payload["version"] = document.version
    if document.aggregate:
        metrics = document.aggregate.metrics()
        payload["formatado"] = {
            key: format_br(value, 1 if key.startswith("ctp") else 2)
            for key, value in metrics.items()
            if isinstance(value, float)
        }
    return payload


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_environment()
    yield


app = FastAPI(title="Gestor PCP API", version="2024.11", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
def health(session: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"status": "ok", "documentos": count_documents(session)}


@app.get("/api/producao/{date_key}")
def producao_endpoint(date_key: str, session: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        document = load_document(session, date_key)
    except ValidationError as exc:
        raise _validation(exc)
    if document is None:
        raise HTTPException(status_code=404, detail="Documento de produção não encontrado")
    return serialize_document(document)


@app.put("/api/producao/{date_key}/turnos/{turno}")
def replace_turno_endpoint(
    date_key: str,
    turno: str,
    rows: List[Dict[str, Any]] = Body(...),
    session: Session = Depends(get_db),
) -> Dict[str, Any]:
    try:
        document = replace_shift(session, date_key, turno, rows)
        session.commit()
    except ValidationError as exc:
        session.rollback()
        raise _validation(exc)
    return serialize_document(document)


@app.patch("/api/producao/{date_key}/turnos/{turno}/planejamento")
def planejamento_endpoint(
    date_key: str,
    turno: str,
    payload: Dict[str, Any] = Body(...),
    session: Session = Depends(get_db),
) -> Dict[str, Any]:
    try:
        document = set_planned(
            session,
            date_key,
            turno,
            str(payload.get("codigo") or ""),
            payload.get("planejamento"),
        )
        session.commit()
    except ValidationError as exc:
        session.rollback()
        raise _validation(exc)
    return serialize_document(document)


@app.get("/api/processamento/pendentes")
def pendentes_endpoint(exclude: Optional[str] = Query(None, description="Data em trabalho (YYYY-MM-DD)")):
    outcome = listar_pendentes(exclude)
    if not outcome.ok:
        return error_response(outcome)
    return {"items": [entry.to_payload() for entry in outcome.value], "total": len(outcome.value)}


@app.post("/api/processamento/pendentes")
def backfill_endpoint(exclude: Optional[str] = Query(None, description="Data mantida fora do lote")):
    outcome = processar_pendentes(exclude)
    if not outcome.ok:
        return error_response(outcome)
    return outcome.value.to_dict()


@app.get("/api/processamento/{date_key}/proposta")
def proposta_endpoint(date_key: str):
    outcome = propor_processamento(date_key)
    if not outcome.ok:
        return error_response(outcome)
    return outcome.value.to_payload()


@app.post("/api/processamento/calcular")
def calcular_endpoint(
    data: Optional[str] = Query(None, description="Data (YYYY-MM-DD); padrão: hoje"),
    confirmar: bool = Query(False, description="Confirma processamento com um só turno"),
):
    outcome = calcular_processamento(data, confirm=confirmar)
    if not outcome.ok:
        return error_response(outcome)
    return {"Processamento": outcome.value.to_payload()}


@app.post("/api/processamento/agendado")
def agendado_endpoint() -> JSONResponse:
    started = trigger_scheduled()
    if not started:
        raise HTTPException(status_code=409, detail="Um processamento agendado já está em andamento")
    return JSONResponse(status_code=202, content={"status": "accepted"})


@app.get("/api/metas")
def metas_endpoint(
    inicio: Optional[str] = Query(None, description="Início YYYY-MM-DD"),
    fim: Optional[str] = Query(None, description="Fim YYYY-MM-DD"),
    tipo: str = Query("mensal", description="diario, semanal ou mensal"),
):
    outcome = projetar_metas(inicio, fim, tipo=tipo)
    if not outcome.ok:
        return error_response(outcome)
    return outcome.value.to_payload()


@app.put("/api/metas/classificacoes/{classificacao}")
def meta_classificacao_endpoint(
    classificacao: str,
    payload: Dict[str, Any] = Body(...),
    session: Session = Depends(get_db),
) -> Dict[str, Any]:
    try:
        value = save_classification_override(session, classificacao, payload.get("meta_kg"))
        session.commit()
    except ValidationError as exc:
        session.rollback()
        raise _validation(exc)
    return {"classificacao": classificacao, "meta_kg": float(value)}


@app.delete("/api/metas/classificacoes/{classificacao}")
def remover_meta_classificacao_endpoint(classificacao: str, session: Session = Depends(get_db)) -> Dict[str, Any]:
    removed = clear_classification_override(session, classificacao)
    session.commit()
    if not removed:
        raise HTTPException(status_code=404, detail="Meta não encontrada")
    return {"classificacao": classificacao, "removida": True}


@app.get("/api/config")
def config_endpoint(session: Session = Depends(get_db)) -> Dict[str, Any]:
    return get_config(session).to_payload()


@app.put("/api/config")
def save_config_endpoint(payload: Dict[str, Any] = Body(...), session: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        config = save_config(session, payload)
        session.commit()
    except ValidationError as exc:
        session.rollback()
        raise _validation(exc)
    return config.to_payload()


@app.put("/api/produtos")
def produtos_endpoint(rows: List[Dict[str, Any]] = Body(...)) -> Dict[str, Any]:
    with session_scope() as session:
        count = bulk_upsert_produtos(session, rows)
    LOG.info("Catálogo de produtos atualizado: %s de %s linhas", count, len(rows))
    return {"upserted": count, "received": len(rows)}
