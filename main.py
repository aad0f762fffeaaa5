import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import SessionLocal, init_db
from errors import NotFound, ValidationError
from schemas import ExpenseIn, ExpenseOut, ExpensePage, ExpenseUpdateIn
from services import ExpenseQuery, ExpenseQueryService, ExpenseService

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Internal error"

app = FastAPI(title="Expense Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_db()


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


@app.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn, response: Response, db: Session = Depends(get_db)
):
    try:
        result = ExpenseService(db).create(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("create_expense failed")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc
    if not result.created:
        response.status_code = 200
    return ExpenseOut.from_expense(result.expense).model_dump()


@app.get("/expenses")
def list_expenses(
    category: Optional[str] = None,
    sort: Optional[str] = None,
    page: Optional[str] = None,
    per_page: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        query = ExpenseQuery.from_params(category, sort, page, per_page)
        result = ExpenseQueryService(db).list(query)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("list_expenses failed")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc

    if isinstance(result, list):
        return [ExpenseOut.from_expense(e).model_dump() for e in result]
    return ExpensePage(
        items=[ExpenseOut.from_expense(e) for e in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        total_pages=result.total_pages,
    ).model_dump()


@app.get("/expenses/summary")
def expense_summary(category: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        return ExpenseQueryService(db).summary(category).model_dump()
    except Exception as exc:
        logger.exception("expense_summary failed")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc


@app.get("/expenses/categories")
def expense_categories(db: Session = Depends(get_db)):
    try:
        return ExpenseQueryService(db).categories()
    except Exception as exc:
        logger.exception("expense_categories failed")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc


@app.get("/expenses/{expense_id}")
def get_expense(expense_id: str, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).get(expense_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail="Not found") from exc
    except Exception as exc:
        logger.exception(f"get_expense failed: id={expense_id}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc
    return ExpenseOut.from_expense(expense).model_dump()


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: str, payload: ExpenseUpdateIn, db: Session = Depends(get_db)
):
    try:
        expense = ExpenseService(db).update(expense_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail="Not found") from exc
    except Exception as exc:
        logger.exception(f"update_expense failed: id={expense_id}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc
    return ExpenseOut.from_expense(expense).model_dump()


@app.delete("/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: str, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).delete(expense_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail="Not found") from exc
    except Exception as exc:
        logger.exception(f"delete_expense failed: id={expense_id}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc
    return Response(status_code=204)
