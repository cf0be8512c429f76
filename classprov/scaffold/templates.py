"""Static content written into a fresh classroom workspace."""

import json

from classprov.config import ProvisionConfig

PROJECT_DIRS = [
    "data/raw",
    "data/processed",
    "data/external",
    "notebooks",
    "scripts",
    "docs",
    "tests",
    "assignments",
    "databases",
    "config",
]

SAMPLE_SQL = """\
CREATE TABLE IF NOT EXISTS students (
    id SERIAL PRIMARY KEY,
    name VARCHAR(100),
    grade INTEGER
);
INSERT INTO students (name, grade) VALUES ('Alice', 95), ('Bob', 87);
"""

JUPYTER_CONFIG = """\
c.ServerApp.ip = '0.0.0.0'
c.ServerApp.port = 8888
c.ServerApp.open_browser = False
c.ServerApp.token = ''
c.ServerApp.password = ''
c.ServerApp.allow_root = False
c.ServerApp.allow_origin = '*'
c.ServerApp.disable_check_xsrf = True
"""

RSERVER_CONF_TEMPLATE = """\
www-port=8787
www-address=0.0.0.0
auth-none=1
auth-validate-users=0
server-user={server_user}
"""


def readme(config: ProvisionConfig) -> str:
    return f"""\
# Data Science Classroom Environment

Personal workspace for `{config.student_id}`.

## Tools
- **Python** with pandas, numpy and psycopg2
- **R** with DBI and the tidyverse (full preset)
- **Jupyter Lab** on port 8888
- **RStudio Server** on port 8787
- **PostgreSQL** database `{config.db_name}` owned by `{config.db_user}`

## Getting started
```bash
classprov check                 # what is installed and reachable
classprov credentials           # (re)create {config.credentials_path}
classprov db create assignment1 # extra database {config.db_user}_assignment1
classprov db connect            # psql on {config.db_name}
jupyter lab --ip=0.0.0.0 --port=8888 --no-browser
```

Load the database settings into your shell with `source {config.credentials_path}`.

## Layout
```
data/{{raw,processed,external}}   datasets
notebooks/                       Jupyter notebooks
scripts/                         Python and R scripts
databases/sample.sql             starter schema
assignments/  docs/  tests/
```
"""


def _code_cell(lines: list[str]) -> dict:
    return {
        "cell_type": "code",
        "execution_count": None,
        "metadata": {},
        "outputs": [],
        "source": [line + "\n" for line in lines[:-1]] + lines[-1:],
    }


def welcome_notebook(config: ProvisionConfig) -> str:
    cells = [
        {
            "cell_type": "markdown",
            "metadata": {},
            "source": [
                "# Welcome to your data science environment\n",
                "\n",
                "Run the cells below to check that the environment works.",
            ],
        },
        _code_cell(
            [
                "import numpy as np",
                "import pandas as pd",
                "print(f'pandas {pd.__version__}, numpy {np.__version__}')",
            ]
        ),
        _code_cell(
            [
                "import os",
                "import psycopg2",
                "",
                "conn = psycopg2.connect(",
                f"    host=os.environ.get('PGHOST', '{config.db_host}'),",
                f"    port=os.environ.get('PGPORT', '{config.db_port}'),",
                f"    dbname=os.environ.get('PGDATABASE', '{config.db_name}'),",
                f"    user=os.environ.get('PGUSER', '{config.db_user}'),",
                "    password=os.environ.get('PGPASSWORD'),",
                ")",
                "with conn.cursor() as cur:",
                "    cur.execute('SELECT version()')",
                "    print(cur.fetchone()[0])",
            ]
        ),
    ]
    notebook = {
        "cells": cells,
        "metadata": {
            "kernelspec": {
                "display_name": "Python 3",
                "language": "python",
                "name": "python3",
            },
            "language_info": {"name": "python"},
        },
        "nbformat": 4,
        "nbformat_minor": 4,
    }
    return json.dumps(notebook, indent=1) + "\n"


def rserver_conf(server_user: str) -> str:
    return RSERVER_CONF_TEMPLATE.format(server_user=server_user)
