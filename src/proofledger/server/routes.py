"""Blueprint exposing proof ingestion and read-only record views over HTTP."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..pipeline import Accepted
from ..service import ProofLedgerService
from .errors import APIError
from .models import IngestResponse, ProofListQuery

api_bp = Blueprint("proofledger_api", __name__)


def _service() -> ProofLedgerService:
    return current_app.extensions["proofledger"]


@api_bp.post("/proofs")
def api_ingest():
    data = request.get_json(silent=True)
    if data is None:
        raise APIError(400, "JSON body required", "E001")
    result = _service().pipeline.ingest(data)
    if not isinstance(result, Accepted):
        return jsonify(result.to_dict()), result.http_status
    body = IngestResponse(location=f"/api/proofs/{result.id}", **result.to_dict())
    return jsonify(body.model_dump()), 201


@api_bp.get("/proofs/<proof_id>")
def api_get_proof(proof_id: str):
    record = _service().store.get_by_id(proof_id)
    if record is None:
        raise APIError(404, "proof not found", "E011", {"id": proof_id})
    return jsonify(record.to_dict()), 200


@api_bp.get("/proofs")
def api_list_proofs():
    query = ProofListQuery.model_validate(request.args.to_dict())
    records = _service().store.list_records(status=query.status, chain=query.chain, limit=query.limit)
    return jsonify({"proofs": [r.to_dict() for r in records], "count": len(records)}), 200


@api_bp.get("/metrics")
def api_metrics():
    return jsonify(_service().store.aggregate_metrics().to_dict()), 200


__all__ = ["api_bp"]
