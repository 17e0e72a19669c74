import sys
from pathlib import Path

import typer
import yaml
from typing_extensions import Annotated

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

app = typer.Typer(
    help="CoreDB operator: managed Postgres on Kubernetes",
    add_completion=False,
)


@app.command("operator")
def run_operator():
    """Run the Kubernetes operator (connects to cluster)."""
    from coredb_operator.main import main

    main()


@app.command("generate-crds")
def generate_crds(
    output: Annotated[
        str, typer.Option("-o", "--output", help="Output directory")
    ] = "crds/generated",
    force: Annotated[bool, typer.Option("--force", help="Force regeneration")] = False,
    validate: Annotated[
        bool, typer.Option("--validate", help="Validate generated CRDs")
    ] = False,
):
    """Generate CRD YAML files from pydantic models."""
    from coredb_operator.crd.generator import CRDManager

    try:
        output_dir = Path(output)
        manager = CRDManager(output_dir=output_dir)

        success = manager.generate_all_crds(force=force)

        if success:
            typer.echo(f"CRDs generated successfully in {output_dir}")

            if validate:
                if manager.validate_generated_crds():
                    typer.echo("CRD validation passed")
                else:
                    typer.echo("CRD validation failed")
                    sys.exit(1)
        else:
            typer.echo("No CRDs generated (models unchanged)")

    except Exception as e:
        typer.echo(f"Failed to generate CRDs: {e}")
        sys.exit(1)


@app.command("validate-models")
def validate_models():
    """Validate CRD models and stack profiles without generating files."""
    from coredb_operator.crd.generator import CRDManager
    from coredb_operator.stacks import load_stacks

    try:
        manager = CRDManager()
        manager.registry.discover_models()
        models = manager.registry.get_all_models()
        invalid = [
            key for key, info in models.items()
            if not manager.registry.validate_model_schema(info["model"])
        ]
        crds = manager.get_crds_as_dict()
        stacks = load_stacks()
    except Exception as e:
        typer.echo(f"Model validation failed: {e}")
        raise typer.Exit(1)

    if invalid:
        typer.echo(f"Models without a usable schema: {', '.join(invalid)}")
        raise typer.Exit(1)

    typer.echo(f"Validated {len(models)} CRD models")
    for key in models.keys():
        typer.echo(f"  - {key}")
    typer.echo(f"Generated {len(crds)} CRDs in memory")
    typer.echo(f"Loaded {len(stacks)} stack profiles")


@app.command("show-stack")
def show_stack(
    stack: Annotated[str, typer.Argument(help="Stack name, e.g. MessageQueue")],
):
    """Print a stack profile as YAML."""
    from coredb_operator.stacks import get_stack

    try:
        profile = get_stack(stack)
    except ValueError:
        typer.echo(f"Unknown stack: {stack}")
        raise typer.Exit(1)
    typer.echo(yaml.safe_dump(profile.model_dump(mode="json", by_alias=True), sort_keys=False))


@app.command("render")
def render(
    path: Annotated[Path, typer.Argument(help="CoreDB manifest file")],
    basedomain: Annotated[
        str, typer.Option("--basedomain", help="Data plane base domain for the ingress route")
    ] = "",
):
    """Print the objects the operator would apply for a CoreDB manifest."""
    from coredb_operator.config import OperatorConfig
    from coredb_operator.errors import CoreDBError
    from coredb_operator.render import render_manifests

    try:
        with open(path) as f:
            obj = yaml.safe_load(f)
        config = OperatorConfig.from_env()
        if basedomain:
            config.data_plane_basedomain = basedomain
        manifests = render_manifests(obj, config)
    except (OSError, yaml.YAMLError, CoreDBError) as e:
        typer.echo(f"Cannot render {path}: {e}")
        raise typer.Exit(1)

    typer.echo(yaml.safe_dump_all(manifests, sort_keys=False))
