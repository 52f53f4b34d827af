from __future__ import annotations

from dataclasses import dataclass

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile, status

from ratecard_recon.api import schemas
from ratecard_recon.db.repository import RateCardRepository
from ratecard_recon.models.config_models import AppConfig
from ratecard_recon.services.catalog import CatalogService
from ratecard_recon.services.sessions import UploadSessionStore
from ratecard_recon.services.settlement import predict_settlement
from ratecard_recon.services.template import TEMPLATE_FILE_NAME, build_template_csv
from ratecard_recon.services.workflow import confirm_import, parse_upload, revalidate_row

"""HTTP routes. Handlers only translate between HTTP and the engine."""

router = APIRouter(prefix="/rate-cards", tags=["rate-cards"])
prediction_router = APIRouter(tags=["settlements"])


@dataclass
class Engine:
    config: AppConfig
    repository: RateCardRepository
    store: UploadSessionStore

    @property
    def catalog(self) -> CatalogService:
        return CatalogService(self.repository, self.config.defaults)


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


@router.get("/template.csv")
def download_template():
    return Response(
        content=build_template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILE_NAME}"'},
    )


@router.post("/parse", response_model=schemas.ParseResponse)
async def parse_csv(file: UploadFile = File(...), engine: Engine = Depends(get_engine)):
    data = await file.read()
    result = await parse_upload(
        data,
        file.filename or "upload.csv",
        repository=engine.repository,
        store=engine.store,
        config=engine.config,
    )
    return result.to_dict()


@router.post("/import", response_model=schemas.ImportResponse)
async def import_rows(payload: schemas.ImportRequest, engine: Engine = Depends(get_engine)):
    report = await confirm_import(
        payload.analysis_id,
        payload.row_ids,
        payload.include_similar,
        repository=engine.repository,
        store=engine.store,
        config=engine.config,
    )
    return report.to_dict()


@router.post("/parse-row")
async def parse_row(payload: schemas.RateCardPayload, engine: Engine = Depends(get_engine)):
    return await revalidate_row(payload.model_dump(), repository=engine.repository, config=engine.config)


@router.get("")
async def list_rate_cards(engine: Engine = Depends(get_engine)):
    return await engine.catalog.list_cards()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_rate_card(payload: schemas.RateCardPayload, engine: Engine = Depends(get_engine)):
    card = await engine.catalog.create_card(payload.model_dump())
    return card.to_payload()


@router.get("/{card_id}")
async def get_rate_card(card_id: str, engine: Engine = Depends(get_engine)):
    card = await engine.catalog.get_card(card_id)
    return card.to_payload()


@router.put("/{card_id}")
async def update_rate_card(card_id: str, payload: schemas.RateCardPayload, engine: Engine = Depends(get_engine)):
    card = await engine.catalog.update_card(card_id, payload.model_dump())
    return card.to_payload()


@router.delete("/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rate_card(card_id: str, engine: Engine = Depends(get_engine)):
    await engine.catalog.delete_card(card_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{card_id}/archive")
async def archive_rate_card(card_id: str, payload: schemas.ArchiveRequest, engine: Engine = Depends(get_engine)):
    card = await engine.catalog.set_archived(card_id, payload.archived)
    return card.to_payload()


@prediction_router.post("/predict-reco", response_model=schemas.PredictResponse)
async def predict_reco(payload: schemas.PredictRequest, engine: Engine = Depends(get_engine)):
    prediction = await predict_settlement(payload.model_dump(), engine.repository, engine.config.settlement)
    return prediction.to_dict()


@prediction_router.get("/settlements")
async def list_settlements(engine: Engine = Depends(get_engine)):
    records = await engine.repository.list_settlements()
    return {"data": [r.to_dict() for r in records]}
