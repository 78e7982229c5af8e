# backend/recovery_engine/reporter/html.py
from pathlib import Path
from jinja2 import Environment, FileSystemLoader, select_autoescape
from ..models import PipelineResult

# templates directory: backend/recovery_engine/templates/plan_report.html
_TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)

def render_report(result: PipelineResult) -> str:
    """Render the plan, its violations and the simulation forecast to HTML."""
    tpl = _env.get_template("plan_report.html")
    layer_of = {a: i for i, ids in enumerate(result.plan.layers) for a in ids}
    return tpl.render(result=result, plan=result.plan, layer_of=layer_of)
