#!/usr/bin/env python3
"""
FastAPI service for the BGP filter manager.

The browser UI keeps no state of its own: it posts form fields or pasted
RouterOS text here, then re-reads the rule table and stats. Positions in the
URL are the 1-based row numbers shown in the table; they are translated to
rule ids before the store is touched.
"""

import logging
import os
from typing import Any, Dict, Tuple

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .filter_defaults import codec_options, get_defaults, merge_defaults
from .mt_filter_gen.filter_parser import parse_text
from .mt_filter_gen.filter_renderer import FilterRenderer
from .mt_filter_gen.filter_rule import KEY_ASN, RuleValidationError, build_rule, sample_rules
from .mt_filter_gen.rule_store import RuleIndexError, RuleNotFoundError, RuleStore, rule_stats


logging.basicConfig(
    level=getattr(logging, (os.getenv("BGP_FILTER_LOG_LEVEL") or "INFO").strip().upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="BGP Filter Manager API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

FILTER_STORE = RuleStore()

EMPTY_EXPORT_MESSAGE = "No filters configured; nothing to export"


def _listing() -> Dict[str, Any]:
    rules = FILTER_STORE.all()
    return {
        "filters": [
            {"position": index + 1, **rule.to_dict()}
            for index, rule in enumerate(rules)
        ],
        "stats": rule_stats(rules),
    }


def _validation_detail(exc: ValueError) -> Any:
    if isinstance(exc, RuleValidationError):
        return {"message": str(exc), "errors": exc.errors}
    return str(exc)


def _stale_position(position: int) -> HTTPException:
    return HTTPException(status_code=404, detail=f"No filter at position {position}; reload the filter list")


def _load_samples() -> int:
    samples = sample_rules()
    FILTER_STORE.extend(samples)
    return len(samples)


@app.on_event("startup")
def _seed_sample_filters() -> None:
    defaults = get_defaults()
    if not defaults["load_samples"] or len(FILTER_STORE):
        return
    # The demo rules are chain-keyed.
    if defaults["schema"] == KEY_ASN:
        logger.info("Sample filters not loaded: session schema is asn")
        return
    count = _load_samples()
    logger.info(f"Loaded {count} sample filters")


@app.get("/api/health")
def health():
    return JSONResponse({"status": "ok", "filters": len(FILTER_STORE)})


@app.get("/api/filters/defaults")
def filter_defaults():
    try:
        return JSONResponse(content=get_defaults())
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=f"Invalid configuration: {exc}") from exc


@app.get("/api/filters")
def list_filters():
    return JSONResponse(content=_listing())


@app.get("/api/filters/stats")
def filter_stats():
    return JSONResponse(content=FILTER_STORE.stats())


@app.post("/api/filters")
def add_filter(payload: Dict[str, Any] = Body(default_factory=dict)):
    try:
        options = merge_defaults(payload)
        rule = build_rule(payload, options["schema"])
        FILTER_STORE.add(rule)
        logger.info(f"Filter {rule.id} added: {rule.chain_or_asn} {rule.action} {rule.prefix}")
        return JSONResponse(
            content={
                "success": True,
                "message": "Filter added successfully",
                "filter": rule.to_dict(),
                "stats": FILTER_STORE.stats(),
            }
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Unexpected error while adding filter")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _update(rule_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    options = merge_defaults(payload)
    rule = build_rule(payload, options["schema"], rule_id=rule_id)
    FILTER_STORE.update_by_id(rule_id, rule)
    logger.info(f"Filter {rule_id} updated")
    return {
        "success": True,
        "message": "Filter updated successfully",
        "filter": FILTER_STORE.get(rule_id).to_dict(),
        "stats": FILTER_STORE.stats(),
    }


@app.put("/api/filters/{position}")
def update_filter(position: int, payload: Dict[str, Any] = Body(default_factory=dict)):
    try:
        rule_id = FILTER_STORE.id_at(position - 1)
        return JSONResponse(content=_update(rule_id, payload))
    except (RuleIndexError, RuleNotFoundError) as exc:
        raise _stale_position(position) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Unexpected error while updating filter")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.put("/api/filters/by-id/{rule_id}")
def update_filter_by_id(rule_id: int, payload: Dict[str, Any] = Body(default_factory=dict)):
    try:
        return JSONResponse(content=_update(rule_id, payload))
    except RuleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"No filter with id {rule_id}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Unexpected error while updating filter")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.delete("/api/filters/{position}")
def delete_filter(position: int):
    try:
        removed = FILTER_STORE.remove_by_id(FILTER_STORE.id_at(position - 1))
    except (RuleIndexError, RuleNotFoundError) as exc:
        raise _stale_position(position) from exc
    logger.info(f"Filter {removed.id} deleted")
    return JSONResponse(
        content={
            "success": True,
            "message": "Filter deleted successfully",
            "filter": removed.to_dict(),
            "stats": FILTER_STORE.stats(),
        }
    )


@app.delete("/api/filters/by-id/{rule_id}")
def delete_filter_by_id(rule_id: int):
    try:
        removed = FILTER_STORE.remove_by_id(rule_id)
    except RuleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"No filter with id {rule_id}") from exc
    logger.info(f"Filter {removed.id} deleted")
    return JSONResponse(
        content={
            "success": True,
            "message": "Filter deleted successfully",
            "filter": removed.to_dict(),
            "stats": FILTER_STORE.stats(),
        }
    )


@app.post("/api/filters/clear")
def clear_filters():
    FILTER_STORE.clear()
    return JSONResponse(content={"success": True, "message": "All filters cleared", "stats": FILTER_STORE.stats()})


@app.post("/api/filters/samples")
def load_sample_filters():
    count = _load_samples()
    return JSONResponse(
        content={"success": True, "message": f"{count} sample filters loaded", **_listing()}
    )


@app.post("/api/filters/import")
def import_filters(payload: Dict[str, Any] = Body(default_factory=dict)):
    try:
        options = merge_defaults(payload)
        result = parse_text(str(payload.get("text") or ""), **codec_options(options))
        FILTER_STORE.extend(result.imported)
        return JSONResponse(
            content={
                **result.to_dict(),
                "success": result.imported_count > 0,
                "stats": FILTER_STORE.stats(),
            }
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Unexpected error while importing filters")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _render_store(payload: Dict[str, Any]) -> Tuple[str, int]:
    """Render the store; a ``schema`` in the payload limits export to rules of that kind."""
    options = codec_options(merge_defaults(payload))
    if not payload.get("schema"):
        options["schema"] = None
    renderer = FilterRenderer(**options)
    output = renderer.render(FILTER_STORE.all())
    return output, renderer.skipped


@app.post("/api/filters/export")
def export_filters(payload: Dict[str, Any] = Body(default_factory=dict)):
    if not len(FILTER_STORE):
        return JSONResponse(content={"success": False, "empty": True, "output": "", "message": EMPTY_EXPORT_MESSAGE})
    try:
        output, skipped = _render_store(payload)
        return JSONResponse(
            content={
                "success": True,
                "empty": False,
                "output": output,
                "skipped": skipped,
                "message": "RouterOS commands generated successfully",
            }
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Unexpected error while rendering filters")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.get("/api/filters/export.rsc")
def export_filters_text(schema: str | None = None):
    try:
        output, _ = _render_store({"schema": schema})
        return PlainTextResponse(content=output)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
