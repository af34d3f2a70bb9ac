import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from roadside.api import create_app
from roadside.database import get_db, load_sample_data


@pytest_asyncio.fixture
async def client():
    """
    Test fixture that creates an async client for the API.
    """
    app = create_app()
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh database, request store and sample providers for every test."""
    import roadside.database

    roadside.database._db = None
    db = get_db()
    db.providers.clear()
    db.emergency_requests.clear()
    load_sample_data()
    yield
    roadside.database._db = None


@pytest.fixture
def emergency_payload() -> dict:
    return {
        "customerId": "cust-1",
        "issueType": "flat_tire",
        "description": "Rear left tire blew out on the highway",
        "urgencyLevel": "high",
        "customerLocation": {
            "lat": 40.7128,
            "lng": -74.0060,
            "address": "Broadway & Chambers St, New York, NY",
        },
        "vehicleInfo": {
            "make": "Honda",
            "model": "Civic",
            "year": 2019,
            "color": "Blue",
            "plateNumber": "ABC-1234",
        },
    }
