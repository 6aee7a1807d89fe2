from __future__ import annotations

from typing import Callable

import pytest

from api.services.auth import CurrentUser, create_access_token
from api.services.config import get_settings
from scripts.reset_demo import main as reset_main


@pytest.fixture
def seeded_db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "erp.db"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("USE_REAL_LLM", "false")
    get_settings.cache_clear()
    reset_main()
    yield tmp_path / "erp.db"
    get_settings.cache_clear()


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    def _headers(user_id: str = "usr_admin", role: str = "admin", company_id: str = "comp_001") -> dict[str, str]:
        user = CurrentUser(id=user_id, email=f"{user_id}@buildco.example", role=role, company_id=company_id)
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers
