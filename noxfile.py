import nox

nox.options.default_venv_backend = "uv"
nox.options.sessions = ["pre_commit", "tests"]


@nox.session
def pre_commit(session: nox.Session):
    """Run pre-commit hooks."""
    session.run("uv", "run", "--frozen", "pre-commit", "run", "--all-files")


@nox.session
@nox.parametrize("python", ["3.11", "3.12", "3.13"])
def tests(session: nox.Session):
    session.run(
        "uv",
        "run",
        "--frozen",
        "--python",
        session.bin + "/python",
        "--active",
        "pytest",
        *session.posargs,
    )


@nox.session
def serve(session: nox.Session):
    """Run the proxy locally without posting to Jenkins."""
    session.run(
        "uv",
        "run",
        "--frozen",
        "sanic",
        "deploy_proxy.web:create_app",
        "--factory",
        "--dev",
        *session.posargs,
        env={"STERILE": "true"},
    )
