"""
Built-in provisioning plans.

`speed` and `reliable` install the same essentials and differ only in their
retry settings; `full` is the complete classroom image; `post-start` runs on
every container start.
"""

from collections.abc import Callable

from classprov.config import ProvisionConfig
from classprov.plan.exceptions import PresetNotFoundError
from classprov.plan.models import FailurePolicy, PlanSpec, StepDefaults, StepSpec

CRAN_MIRROR = "https://cloud.r-project.org/"
RSTUDIO_DEB = "rstudio-server-2023.12.1-402-amd64.deb"
RSTUDIO_URL = f"https://download2.rstudio.org/server/jammy/amd64/{RSTUDIO_DEB}"

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive", "APT_KEY_DONT_WARN_ON_DANGEROUS_USAGE": "1"}

ESSENTIAL_PYTHON = ["psycopg2-binary", "pandas", "numpy", "jupyter"]

SYSTEM_PACKAGES = [
    "build-essential",
    "libcurl4-openssl-dev",
    "libssl-dev",
    "libxml2-dev",
    "libfontconfig1-dev",
    "libharfbuzz-dev",
    "libfribidi-dev",
    "libfreetype6-dev",
    "libpng-dev",
    "libtiff5-dev",
    "libjpeg-dev",
    "unzip",
    "tree",
    "htop",
    "jq",
    "postgresql-client",
    "sqlite3",
]

DATA_SCIENCE_PYTHON = [
    "jupyter",
    "jupyterlab",
    "notebook",
    "pandas",
    "numpy",
    "scipy",
    "matplotlib",
    "seaborn",
    "plotly",
    "scikit-learn",
    "statsmodels",
]

DATABASE_PYTHON = ["sqlalchemy", "psycopg2-binary"]

EXTRA_PYTHON = [
    "requests",
    "beautifulsoup4",
    "openpyxl",
    "pyyaml",
    "python-dotenv",
    "ipykernel",
    "ipywidgets",
]

R_PACKAGES = [
    "tidyverse",
    "DBI",
    "RPostgreSQL",
    "RSQLite",
    "dbplyr",
    "rmarkdown",
    "knitr",
    "here",
    "janitor",
    "lubridate",
    "readxl",
    "jsonlite",
]


def _apt_install(name: str, packages: list[str], **kwargs) -> StepSpec:
    return StepSpec(
        name=name,
        description=f"Install {', '.join(packages)}",
        command=["sudo", "-E", "apt-get", "install", "-y", "-qq", *packages],
        env=APT_ENV,
        **kwargs,
    )


def _pip_install(name: str, packages: list[str], **kwargs) -> StepSpec:
    return StepSpec(
        name=name,
        description=f"pip install {' '.join(packages)}",
        command=["pip", "install", "--no-cache-dir", "--user", *packages],
        **kwargs,
    )


def _r_install(name: str, packages: list[str], **kwargs) -> StepSpec:
    vector = ", ".join(f"'{pkg}'" for pkg in packages)
    script = (
        f"pkgs <- c({vector}); "
        "missing <- pkgs[!pkgs %in% rownames(installed.packages())]; "
        f"if (length(missing)) install.packages(missing, repos='{CRAN_MIRROR}'); "
        "stopifnot(all(pkgs %in% rownames(installed.packages())))"
    )
    return StepSpec(
        name=name,
        description=f"Install R packages {', '.join(packages)}",
        command=["sudo", "Rscript", "-e", script],
        **kwargs,
    )


def _essentials(plan_name: str, description: str, defaults: StepDefaults) -> PlanSpec:
    steps = [
        StepSpec(
            name="apt-update",
            description="Update package lists",
            command=["sudo", "-E", "apt-get", "update", "-qq"],
            env=APT_ENV,
        ),
        _apt_install("postgresql-client", ["postgresql-client"]),
        _apt_install("r-base", ["r-base"]),
        _r_install("r-dbi", ["DBI"]),
        _pip_install("python-essentials", ESSENTIAL_PYTHON),
        StepSpec(name="scaffold", action="scaffold_workspace", on_failure=FailurePolicy.ABORT),
        StepSpec(name="credentials", action="ensure_credentials"),
    ]
    return PlanSpec(name=plan_name, description=description, defaults=defaults, steps=steps)


def speed_plan(config: ProvisionConfig) -> PlanSpec:
    return _essentials(
        "speed",
        "Essentials only, one short attempt per step",
        StepDefaults(timeout_sec=120, max_attempts=1),
    )


def reliable_plan(config: ProvisionConfig) -> PlanSpec:
    return _essentials(
        "reliable",
        "Essentials with retries for flaky networks",
        StepDefaults(timeout_sec=600, max_attempts=3, retry_delay_sec=10),
    )


def full_plan(config: ProvisionConfig) -> PlanSpec:
    project_dir = config.project_dir
    steps = [
        StepSpec(
            name="apt-update",
            description="Update and upgrade system packages",
            command=["sh", "-c", "sudo -E apt-get update && sudo -E apt-get upgrade -y"],
            env=APT_ENV,
            timeout_sec=1800,
        ),
        _apt_install("system-deps", SYSTEM_PACKAGES),
        _apt_install("postgresql-server", ["postgresql", "postgresql-contrib"]),
        StepSpec(
            name="postgresql-start",
            description="Start PostgreSQL",
            command=["sudo", "service", "postgresql", "start"],
            timeout_sec=60,
        ),
        StepSpec(name="credentials", action="ensure_credentials", on_failure=FailurePolicy.ABORT),
        StepSpec(name="student-database", action="create_student_database"),
        StepSpec(
            name="pip-upgrade",
            description="Upgrade pip, setuptools and wheel",
            command=["pip", "install", "--upgrade", "pip", "setuptools", "wheel"],
        ),
        _pip_install("python-data-science", DATA_SCIENCE_PYTHON, timeout_sec=1800),
        _pip_install("python-database", DATABASE_PYTHON),
        _pip_install("python-extras", EXTRA_PYTHON),
        _apt_install("r-base", ["r-base"]),
        _r_install("r-packages", R_PACKAGES, timeout_sec=3600),
        StepSpec(
            name="python-kernel",
            description="Register the Python Jupyter kernel",
            command=["python", "-m", "ipykernel", "install", "--user", "--name=python3", "--display-name=Python 3"],
            timeout_sec=120,
        ),
        _r_install("r-kernel", ["IRkernel"]),
        StepSpec(
            name="r-kernel-spec",
            description="Register the R Jupyter kernel",
            command=["sudo", "Rscript", "-e", "IRkernel::installspec(user = FALSE)"],
            timeout_sec=120,
        ),
        StepSpec(name="scaffold", action="scaffold_workspace", on_failure=FailurePolicy.ABORT),
        StepSpec(
            name="jupyter-config",
            description="Install Jupyter Lab config",
            command=[
                "sh",
                "-c",
                f'install -D -m 644 "{project_dir}/config/jupyter_lab_config.py" "$HOME/.jupyter/jupyter_lab_config.py"',
            ],
            timeout_sec=30,
        ),
        StepSpec(
            name="rstudio-download",
            description="Download RStudio Server",
            command=["wget", "-q", "-O", f"/tmp/{RSTUDIO_DEB}", RSTUDIO_URL],
            timeout_sec=600,
        ),
        StepSpec(
            name="rstudio-install",
            description="Install RStudio Server",
            command=[
                "sh",
                "-c",
                f"sudo dpkg -i /tmp/{RSTUDIO_DEB} || sudo -E apt-get install -f -y",
            ],
            env=APT_ENV,
            max_attempts=1,
        ),
        StepSpec(
            name="rstudio-config",
            description="Install RStudio Server config",
            command=["sudo", "install", "-D", "-m", "644", f"{project_dir}/config/rserver.conf", "/etc/rstudio/rserver.conf"],
            timeout_sec=30,
        ),
        StepSpec(
            name="rstudio-enable",
            description="Enable and start RStudio Server",
            command=["sudo", "systemctl", "enable", "--now", "rstudio-server"],
            timeout_sec=60,
        ),
        StepSpec(name="health", action="health_check"),
    ]
    return PlanSpec(
        name="full",
        description="Complete classroom environment: PostgreSQL, Python, R, Jupyter, RStudio",
        defaults=StepDefaults(timeout_sec=900, max_attempts=3, retry_delay_sec=10),
        steps=steps,
    )


def post_start_plan(config: ProvisionConfig) -> PlanSpec:
    steps = [
        StepSpec(
            name="postgresql-start",
            description="Start PostgreSQL",
            command=["sudo", "service", "postgresql", "start"],
        ),
        StepSpec(
            name="rstudio-start",
            description="Start RStudio Server",
            command=["sudo", "systemctl", "start", "rstudio-server"],
        ),
        StepSpec(name="credentials", action="ensure_credentials"),
    ]
    return PlanSpec(
        name="post-start",
        description="Start services on every container start",
        defaults=StepDefaults(timeout_sec=60, max_attempts=2, retry_delay_sec=3),
        steps=steps,
    )


PRESETS: dict[str, tuple[str, Callable[[ProvisionConfig], PlanSpec]]] = {
    "speed": ("Essentials only, one short attempt per step", speed_plan),
    "reliable": ("Essentials with retries for flaky networks", reliable_plan),
    "full": ("Complete classroom environment", full_plan),
    "post-start": ("Start services on every container start", post_start_plan),
}


def list_presets() -> list[tuple[str, str]]:
    return [(name, description) for name, (description, _) in PRESETS.items()]


def get_preset(name: str, config: ProvisionConfig) -> PlanSpec:
    try:
        _, build = PRESETS[name]
    except KeyError:
        raise PresetNotFoundError(name, list(PRESETS))
    return build(config)
