"""Dataset and dataset item endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from prompt_evaluator.api.dependencies import get_current_user_id, get_db
from prompt_evaluator.api.schemas import (
    DatasetCreate,
    DatasetItemCreate,
    DatasetItemUpdate,
    DatasetUpdate,
    ErrorResponse,
)
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.schemas.entities import Dataset, DatasetItem

router = APIRouter(tags=["datasets"])

_NOT_FOUND = {404: {"model": ErrorResponse}}


# ---------------------------------------------------------------------------
# Datasets
# ---------------------------------------------------------------------------


@router.post("/datasets", response_model=Dataset, status_code=201)
async def create_dataset(
    body: DatasetCreate,
    conn=Depends(get_db),
    user_id: str | None = Depends(get_current_user_id),
):
    return repo.create_dataset(
        conn, name=body.name, description=body.description, user_id=user_id
    )


@router.get("/datasets", response_model=list[Dataset])
async def list_datasets(
    user_id: str | None = Query(default=None, alias="userId"),
    conn=Depends(get_db),
):
    return repo.list_datasets(conn, user_id=user_id)


@router.get("/datasets/{dataset_id}", response_model=Dataset, responses=_NOT_FOUND)
async def get_dataset(dataset_id: int, conn=Depends(get_db)):
    return repo.get_dataset(conn, dataset_id)


@router.put("/datasets/{dataset_id}", response_model=Dataset, responses=_NOT_FOUND)
async def update_dataset(dataset_id: int, body: DatasetUpdate, conn=Depends(get_db)):
    return repo.update_dataset(
        conn, dataset_id, name=body.name, description=body.description
    )


@router.delete(
    "/datasets/{dataset_id}",
    status_code=204,
    responses={400: {"model": ErrorResponse}, **_NOT_FOUND},
)
async def delete_dataset(dataset_id: int, conn=Depends(get_db)):
    """Delete a dataset with all of its items."""
    repo.delete_dataset(conn, dataset_id)
    return Response(status_code=204)


@router.get("/datasets/{dataset_id}/items", response_model=list[DatasetItem], responses=_NOT_FOUND)
async def list_dataset_items(dataset_id: int, conn=Depends(get_db)):
    repo.get_dataset(conn, dataset_id)
    return repo.list_dataset_items(conn, dataset_id)


# ---------------------------------------------------------------------------
# Dataset items
# ---------------------------------------------------------------------------


@router.post("/dataset-items", response_model=DatasetItem, status_code=201, responses=_NOT_FOUND)
async def create_dataset_item(body: DatasetItemCreate, conn=Depends(get_db)):
    return repo.create_dataset_item(conn, **body.model_dump())


@router.get("/dataset-items/{item_id}", response_model=DatasetItem, responses=_NOT_FOUND)
async def get_dataset_item(item_id: int, conn=Depends(get_db)):
    return repo.get_dataset_item(conn, item_id)


@router.put("/dataset-items/{item_id}", response_model=DatasetItem, responses=_NOT_FOUND)
async def update_dataset_item(item_id: int, body: DatasetItemUpdate, conn=Depends(get_db)):
    return repo.update_dataset_item(conn, item_id, **body.model_dump(exclude_none=True))


@router.delete("/dataset-items/{item_id}", status_code=204, responses=_NOT_FOUND)
async def delete_dataset_item(item_id: int, conn=Depends(get_db)):
    repo.delete_dataset_item(conn, item_id)
    return Response(status_code=204)
