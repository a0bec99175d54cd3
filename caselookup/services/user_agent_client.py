# caselookup/services/user_agent_client.py
import random
import logging
from typing import Callable, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from caselookup.core.config import AppSettings
from caselookup.db import crud

logger = logging.getLogger(__name__)

SYSTEM_PURPOSE = "system"

FALLBACK_USER_AGENTS = [
    # Chrome (Windows)
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Chrome (Mac)
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Edge (Windows)
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    # Firefox (Windows)
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:126.0) Gecko/20100101 Firefox/126.0",
    # Safari (Mac)
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
]


def looks_like_browser_agent(user_agent: Optional[str]) -> bool:
    return bool(user_agent) and "Mozilla/" in user_agent


class UserAgentClient:
    """
    Picks the browser user agent used for portal traffic.

    Order of preference: an agent sent by the client (remembered for that user),
    the user's remembered agent, then a random desktop agent which is also
    remembered. The "system" purpose always gets DEFAULT_USER_AGENT.
    """

    def __init__(self, settings: AppSettings, session_factory: Callable[[], Session], rng: Optional[random.Random] = None):
        self.settings = settings
        self.session_factory = session_factory
        self.rng = rng or random.Random()

    def _remember(self, db: Session, user_id: str, user_agent: str) -> None:
        try:
            crud.save_user_agent(db, user_id, user_agent)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"[{user_id}] Could not store user agent: {e}")

    def get_user_agent(self, user_id: str, provided_user_agent: Optional[str] = None) -> str:
        if user_id == SYSTEM_PURPOSE:
            return self.settings.DEFAULT_USER_AGENT

        db = self.session_factory()
        try:
            if looks_like_browser_agent(provided_user_agent):
                self._remember(db, user_id, provided_user_agent)
                return provided_user_agent

            try:
                stored = crud.get_user_agent(db, user_id)
            except SQLAlchemyError as e:
                logger.warning(f"[{user_id}] Could not read stored user agent: {e}")
                stored = None
            if stored:
                return stored

            selected = self.rng.choice(FALLBACK_USER_AGENTS)
            self._remember(db, user_id, selected)
            return selected
        finally:
            db.close()
