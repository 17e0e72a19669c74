import yaml
from typer.testing import CliRunner

from coredb_operator.cli import app

runner = CliRunner()


def test_show_stack():
    result = runner.invoke(app, ["show-stack", "MessageQueue"])
    assert result.exit_code == 0
    profile = yaml.safe_load(result.output)
    assert profile["name"] == "MessageQueue"
    assert [e["name"] for e in profile["extensions"]] == ["pgmq", "pg_partman"]


def test_show_unknown_stack():
    result = runner.invoke(app, ["show-stack", "Warehouse"])
    assert result.exit_code == 1
    assert "Unknown stack" in result.output


def test_validate_models():
    result = runner.invoke(app, ["validate-models"])
    assert result.exit_code == 0
    assert "coredb.io/v1alpha1/CoreDB" in result.output
    assert "Loaded 5 stack profiles" in result.output


def test_render(tmp_path):
    path = tmp_path / "coredb.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "apiVersion": "coredb.io/v1alpha1",
                "kind": "CoreDB",
                "metadata": {"name": "sample", "namespace": "db"},
                "spec": {"stack": "OLAP"},
            }
        )
    )
    result = runner.invoke(app, ["render", str(path), "--basedomain", "data.example.com"])
    assert result.exit_code == 0
    kinds = [doc["kind"] for doc in yaml.safe_load_all(result.output) if doc]
    assert kinds[0] == "Secret"
    assert kinds[-1] == "IngressRouteTCP"


def test_render_invalid_manifest(tmp_path):
    path = tmp_path / "coredb.yaml"
    path.write_text("metadata: {name: sample}\nspec: {replicas: -1}\n")
    result = runner.invoke(app, ["render", str(path)])
    assert result.exit_code == 1
    assert "Cannot render" in result.output
