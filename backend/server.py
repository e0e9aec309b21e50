from fastapi import FastAPI
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from pymongo import MongoClient
import os
import logging
from pathlib import Path

from common.config import load_config
from providers import InMemorySettingsStore, load_providers
from departure_reminder.api import departure_router
from departure_reminder.engine import build_engine
from departure_reminder.settings import MongoSettingsStore

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

client = None


def connect_settings_store(config):
    """Mongo-backed settings in prod; in-memory when Mongo is unreachable or in demo/test mode."""
    global client
    user_id = os.environ.get('DEPARTURE_USER_ID', 'default')
    if config.mode in {"demo", "test"}:
        return InMemorySettingsStore()
    try:
        temp_client = MongoClient(config.mongo_url, serverSelectionTimeoutMS=5000)
        temp_client.admin.command('ping')
        client = temp_client
        logger.info("MongoDB connection successful")
        return MongoSettingsStore(client[config.db_name], user_id)
    except Exception as e:
        logger.warning(f"MongoDB connection failed: {e}. Settings will not persist across restarts.")
        client = None
        return InMemorySettingsStore()


app = FastAPI(title="Departure Reminder Engine")

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(departure_router, prefix="/api")


@app.on_event("startup")
async def startup_engine():
    config = load_config()
    providers = load_providers(config.mode)
    settings_store = connect_settings_store(config)
    app.state.departure_engine = build_engine(providers, settings_store, config=config)
    logger.info(f"[DEPARTURE] Engine started in {config.mode} mode")


@app.on_event("shutdown")
async def shutdown_engine():
    engine = getattr(app.state, "departure_engine", None)
    if engine is not None:
        await engine.enforcer.cleanup_all()
        aclose = getattr(engine.providers.routing, "aclose", None)
        if aclose is not None:
            await aclose()
    if client is not None:
        client.close()
