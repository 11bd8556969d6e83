"""
Experiments read through `request.state.feature`.

uv run uvicorn examples.checkout:app --reload
curl -c jar -b jar localhost:8000/checkout
XPR_URL=http://localhost:5000 XPR_APP=checkout uv run uvicorn examples.checkout:app
"""

from fastapi import Depends, FastAPI
from starlette.requests import Request

from fastapi_xpr import FeatureQuery, XprClient, get_feature

DEFAULTS = {
    "app": {"experiments": [{"name": "maintenance_banner", "default": False}]},
    "shared": {
        "experiments": [
            {"name": "one_click", "percent": 50},
            {"name": "new_summary", "default": False, "references": {"beta": {"default": True}}},
        ]
    },
}

xpr = XprClient(defaults=DEFAULTS)
app = FastAPI(lifespan=xpr.lifespan)
xpr.install(app)


@app.get("/checkout")
async def checkout(request: Request) -> dict[str, bool]:
    feature = request.state.feature
    return {
        "banner": feature("maintenance_banner"),
        "one_click": feature("one_click"),
        "new_summary": feature("new_summary"),
    }


@app.get("/summary")
async def summary(feature: FeatureQuery = Depends(get_feature)) -> dict[str, str]:
    return {"layout": "v2" if feature("new_summary") else "v1"}
