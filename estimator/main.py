"""FastAPI application exposing the estimator to the intake form."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from estimator.config import LOG_LEVEL, SERVICE_NAME, SERVICE_VERSION
from estimator.engine import calculate_combined_estimate
from estimator.models import EstimateRequest
from estimator.validation import active_procedures, validate_submission

LOGGER = logging.getLogger(__name__)
logging.getLogger("estimator").setLevel(LOG_LEVEL)


def _with_audit_hash(payload: dict[str, Any]) -> dict[str, Any]:
	material = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
	hash_value = hashlib.sha256(material.encode("utf-8")).hexdigest()
	response = dict(payload)
	response["audit_hash"] = hash_value
	return response


app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION)

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
	"""Redirect callers to the interactive documentation."""
	return RedirectResponse(url="/docs")


@app.get("/health")
async def health_check() -> dict[str, object]:
	"""Return readiness metadata for external monitors."""
	return {"ok": True, "service": SERVICE_NAME, "version": SERVICE_VERSION}


@app.post("/estimate/validate")
async def validate_estimate(request: EstimateRequest) -> dict[str, object]:
	"""Check a submission without running the engine."""

	errors = validate_submission(request)
	return {"ok": not errors, "errors": errors}


@app.post("/estimate")
async def estimate(request: EstimateRequest) -> dict[str, object]:
	"""Validate the submitted form and return the multi-payer estimate."""

	errors = validate_submission(request)
	if errors:
		raise HTTPException(
			status_code=400,
			detail={"message": "Missing or Invalid Information", "errors": errors},
		)

	procedures = active_procedures(request.procedures)
	result = calculate_combined_estimate(
		request.payers,
		procedures,
		request.meta_data,
		request.propensity_data,
	)
	LOGGER.info(
		"Estimated %s procedure(s) across %s payer(s): patient responsibility %s",
		len(procedures),
		len(request.payers),
		result.total_patient_responsibility,
	)
	return _with_audit_hash(result.model_dump(mode="json"))
