"""Schema endpoints — view, edit and reset table schemas; detect a table type."""

from fastapi import APIRouter, Depends, HTTPException

from yunzhou.api.deps import get_schema_registry, get_table_type
from yunzhou.core.models import DetectRequest, DetectResponse, SchemaUpdate, TableType
from yunzhou.core.schema_registry import SchemaRegistry, detect_table_type

router = APIRouter()


@router.get("/schemas")
def list_schemas(registry: SchemaRegistry = Depends(get_schema_registry)):
    """All table schemas, keyed by table type."""
    return {t.value: s.model_dump() for t, s in registry.get_all().items()}


@router.get("/schemas/{table}")
def get_schema(
    table_type: TableType = Depends(get_table_type),
    registry: SchemaRegistry = Depends(get_schema_registry),
):
    return registry.get_schema(table_type).model_dump()


@router.put("/schemas/{table}")
def update_schema(
    body: SchemaUpdate,
    table_type: TableType = Depends(get_table_type),
    registry: SchemaRegistry = Depends(get_schema_registry),
):
    """Replace the field list of a table schema."""
    try:
        schema = registry.update_schema(table_type, body.fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return schema.model_dump()


@router.delete("/schemas/{table}")
def reset_schema(
    table_type: TableType = Depends(get_table_type),
    registry: SchemaRegistry = Depends(get_schema_registry),
):
    """Drop user edits and return the shipped default."""
    return registry.reset_schema(table_type).model_dump()


@router.post("/schemas/detect", response_model=DetectResponse)
def detect(body: DetectRequest, registry: SchemaRegistry = Depends(get_schema_registry)):
    detected, scores = detect_table_type(body.headers, registry.get_all())
    return DetectResponse(detected=detected, scores=scores)
