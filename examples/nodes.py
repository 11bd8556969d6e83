"""
Experiments injected as nodnod nodes.

uv run uvicorn examples.nodes:app --reload
curl localhost:8000/home
"""

from dataclasses import dataclass

from fastapi import FastAPI
from nodnod import scalar_node

from fastapi_xpr import AppFeatures, Features, StaticRemoteClient, XprClient, experiment_route

CONFIG = {
    "app": {"experiments": [{"name": "dark_mode", "default": True}]},
    "shared": {"experiments": [{"name": "new_ui", "percent": 50}]},
}

xpr = XprClient(remote=StaticRemoteClient(CONFIG))


@dataclass
class Layout:
    new_ui: bool
    dark_mode: bool


@scalar_node
class CurrentLayout:
    @classmethod
    def __compose__(cls, feature: Features) -> Layout:
        return Layout(new_ui=feature("new_ui"), dark_mode=feature("dark_mode"))


app = FastAPI(lifespan=xpr.lifespan)
xpr.install(app)


@app.get("/home")
@experiment_route(scope=xpr.scope)
async def home(layout: CurrentLayout) -> dict[str, bool]:
    return {"new_ui": layout.new_ui, "dark_mode": layout.dark_mode}


@app.get("/status")
@experiment_route(scope=xpr.scope)
async def status(app_feature: AppFeatures) -> dict[str, bool]:
    return {"dark_mode": app_feature("dark_mode")}
