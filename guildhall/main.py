from .settings import app
from .User.api import *
from .Quests.api import *
from .Progression.api import *
from .ranking.api import *
from .notifications.api import *


@app.get("/healthz")
async def healthcheck():
    return {"status": "ok"}
