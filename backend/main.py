from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ConfigDict, ValidationError
import logging
import traceback
from typing import Dict, Any, Optional, List
from dotenv import load_dotenv

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

from config import SQL_DIALECT, TRANSPILER_DEBUG, CATALOG_API_URL, CATALOG_TIMEOUT_SECONDS
from canvas_sql import (
    QueryModel,
    QueryModelError,
    SQLTranspiler,
    TranspilerOptions,
    ColumnCatalog,
    HttpColumnCatalog,
    apply_mutation,
    parse_mutation,
    create_transpiler,
    enrich_query_model,
)

app = FastAPI(title="Canvas SQL Backend")

# One transpiler per app instance, handed to endpoints through get_transpiler
app.state.transpiler = create_transpiler(
    TranspilerOptions(dialect=SQL_DIALECT, debug_mode=TRANSPILER_DEBUG)
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],  # Canvas frontend
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_transpiler(request: Request) -> SQLTranspiler:
    return request.app.state.transpiler


def get_column_catalog() -> ColumnCatalog:
    return HttpColumnCatalog(CATALOG_API_URL, timeout=CATALOG_TIMEOUT_SECONDS)


def _first_validation_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    location = ".".join(str(part) for part in errors[0].get("loc", ()))
    return f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg", str(e))


@app.get("/")
async def root():
    return {"message": "Canvas SQL Backend API", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/api/capabilities")
async def capabilities(transpiler: SQLTranspiler = Depends(get_transpiler)):
    """SQL features the canvas supports fully, partially, or not at all."""
    return transpiler.capabilities()


class SqlToCanvasRequest(BaseModel):
    sql: str


class SqlToCanvasResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    model: Optional[Dict[str, Any]] = None
    errors: List[str] = []
    warnings: List[str] = []
    strategy: Optional[str] = None
    debug_info: Optional[Dict[str, Any]] = Field(None, alias="debugInfo")


@app.post("/api/sql-to-canvas", response_model=SqlToCanvasResponse, response_model_by_alias=True)
async def sql_to_canvas_endpoint(req: SqlToCanvasRequest, transpiler: SQLTranspiler = Depends(get_transpiler)):
    """
    Parse SQL from the editor into a Query Model for the canvas.

    A failed parse returns success=false with the error list; the canvas
    keeps its previous model in that case.
    """
    try:
        result = transpiler.parse(req.sql)
        return SqlToCanvasResponse(
            success=result.success,
            model=result.model.model_dump(by_alias=True),
            errors=result.errors,
            warnings=result.warnings,
            strategy=result.strategy,
            debug_info=result.debug_info,
        )
    except Exception as e:
        logger.error(f"[sql_to_canvas] Unexpected error: {e}")
        logger.error(traceback.format_exc())
        return SqlToCanvasResponse(success=False, errors=[f"Failed to parse SQL: {str(e)}"])


class CanvasToSqlRequest(BaseModel):
    model: Dict[str, Any]


class CanvasToSqlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    sql: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []
    strategy: Optional[str] = None
    debug_info: Optional[Dict[str, Any]] = Field(None, alias="debugInfo")


@app.post("/api/canvas-to-sql", response_model=CanvasToSqlResponse, response_model_by_alias=True)
async def canvas_to_sql_endpoint(req: CanvasToSqlRequest, transpiler: SQLTranspiler = Depends(get_transpiler)):
    """
    Convert the canvas Query Model to SQL for the editor.

    Always returns SQL text: empty for an empty canvas, a diagnostic comment
    when every generator failed.
    """
    try:
        result = transpiler.generate(req.model)
        return CanvasToSqlResponse(
            success=result.success,
            sql=result.sql,
            errors=result.errors,
            warnings=result.warnings,
            strategy=result.strategy,
            debug_info=result.debug_info,
        )
    except Exception as e:
        logger.error(f"[canvas_to_sql] Error: {e}")
        logger.error(traceback.format_exc())
        return CanvasToSqlResponse(success=False, errors=[f"Failed to generate SQL: {str(e)}"])


class MutateRequest(BaseModel):
    model: Dict[str, Any]
    mutation: Dict[str, Any]


class MutateResponse(BaseModel):
    success: bool
    model: Optional[Dict[str, Any]] = None
    sql: Optional[str] = None
    warnings: List[str] = []
    error: Optional[str] = None


@app.post("/api/canvas/mutate", response_model=MutateResponse)
async def mutate_canvas_endpoint(req: MutateRequest, transpiler: SQLTranspiler = Depends(get_transpiler)):
    """
    Apply one canvas mutation and return the updated model with its SQL.

    Rejected mutations (unknown alias, duplicate alias, ...) return
    success=false and no model, so the canvas keeps its current state.
    """
    try:
        model = QueryModel.model_validate(req.model)
        model.check_integrity()
        mutation = parse_mutation(req.mutation)
        updated = apply_mutation(model, mutation)
    except ValidationError as e:
        return MutateResponse(success=False, error=f"Invalid request: {_first_validation_error(e)}")
    except QueryModelError as e:
        return MutateResponse(success=False, error=str(e))
    except Exception as e:
        logger.error(f"[canvas_mutate] Unexpected error: {e}")
        logger.error(traceback.format_exc())
        return MutateResponse(success=False, error=f"Failed to apply mutation: {str(e)}")

    generation = transpiler.generate(updated)
    return MutateResponse(
        success=True,
        model=updated.model_dump(by_alias=True),
        sql=generation.sql,
        warnings=generation.warnings,
    )


class RoundTripRequest(BaseModel):
    sql: str


@app.post("/api/validate-round-trip")
async def validate_round_trip_endpoint(req: RoundTripRequest, transpiler: SQLTranspiler = Depends(get_transpiler)):
    """Parse, regenerate and reparse SQL; report the differences (diagnostic only)."""
    try:
        return transpiler.validate_round_trip(req.sql).model_dump(by_alias=True)
    except Exception as e:
        logger.error(f"[validate_round_trip] Error: {e}")
        logger.error(traceback.format_exc())
        return {"success": False, "isEquivalent": False, "differences": [], "errors": [str(e)]}


class EnrichRequest(BaseModel):
    model: Dict[str, Any]


class EnrichResponse(BaseModel):
    success: bool
    model: Optional[Dict[str, Any]] = None
    warnings: List[str] = []
    error: Optional[str] = None


@app.post("/api/canvas/enrich", response_model=EnrichResponse)
async def enrich_canvas_endpoint(req: EnrichRequest, catalog: ColumnCatalog = Depends(get_column_catalog)):
    """Fetch column metadata for every table on the canvas that has none yet."""
    try:
        model = QueryModel.model_validate(req.model)
    except ValidationError as e:
        return EnrichResponse(success=False, error=f"Invalid model: {_first_validation_error(e)}")

    try:
        result = await enrich_query_model(model, catalog, timeout=CATALOG_TIMEOUT_SECONDS)
        return EnrichResponse(
            success=True,
            model=result.model.model_dump(by_alias=True),
            warnings=result.warnings,
        )
    except Exception as e:
        logger.error(f"[canvas_enrich] Error: {e}")
        logger.error(traceback.format_exc())
        return EnrichResponse(success=False, error=f"Failed to enrich model: {str(e)}")

