import pathlib
import tomllib

PYPROJECT = pathlib.Path(__file__).parent.parent / "pyproject.toml"


class TestProject:
    def test_python_matches_nodnod(self) -> None:
        project = tomllib.loads(PYPROJECT.read_text())["project"]
        assert project["requires-python"] == ">=3.13"
        assert "nodnod" in project["dependencies"]
