"""Definition of the database creation job.

The job runs the backing store's container image and uses the mysql client to
create the database, set its character set and collation, and grant the
database user access. Its definition is content-hashed; the hash is what the
claim's status records once the job has completed.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from pydantic import BaseModel, Field

from .models import MariaDBDatabase, StoreConnection

# Secret keys
DB_ROOT_PASSWORD_KEY = "DbRootPassword"
DATABASE_PASSWORD_KEY = "DatabasePassword"

# Annotation carrying the full definition hash on dispatched jobs
HASH_ANNOTATION = "mariadb.openstack.org/job-hash"

MAX_JOB_NAME_LENGTH = 63
MAX_LABEL_VALUE_LENGTH = 63
HASH_SUFFIX_LENGTH = 8
DEFAULT_BACKOFF_LIMIT = 6

# SQL identifiers are interpolated into the script, so only plain names pass
VALID_SQL_IDENTIFIER_PATTERN = r"^[A-Za-z0-9_]{1,64}$"

DATABASE_SCRIPT = (
    'export DatabasePassword=${{DatabasePassword:?"Please specify a DatabasePassword variable."}}\n'
    'mysql -h {host} -u root -P 3306 -e "'
    "CREATE DATABASE IF NOT EXISTS {db}; "
    "ALTER DATABASE {db} CHARACTER SET '{charset}' COLLATE '{collation}'; "
    "GRANT ALL PRIVILEGES ON {db}.* TO '{db}'@'localhost' IDENTIFIED BY '$DatabasePassword'; "
    "GRANT ALL PRIVILEGES ON {db}.* TO '{db}'@'%' IDENTIFIED BY '$DatabasePassword';"
    '"\n'
)


class JobDefinitionError(ValueError):
    """Raised when a claim cannot be turned into a job definition."""

    pass


class SecretEnv(BaseModel):
    """Environment variable sourced from a Secret key."""

    model_config = {"frozen": True}

    name: str
    secret: str
    key: str


class JobDefinition(BaseModel):
    """Everything that determines what the provisioning job does."""

    model_config = {"frozen": True}

    name: str
    namespace: str
    image: str
    command: list[str]
    env: list[SecretEnv] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    backoff_limit: int = DEFAULT_BACKOFF_LIMIT

    def compute_hash(self) -> str:
        """Content hash of the definition (sha256 over canonical JSON)."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def instance_name(self, definition_hash: str) -> str:
        """Job name for one dispatch of this definition."""
        # Object names must start and end alphanumeric
        base = self.name[: MAX_JOB_NAME_LENGTH - HASH_SUFFIX_LENGTH - 1].strip("-") or "job"
        return f"{base}-{definition_hash[:HASH_SUFFIX_LENGTH]}"

    def to_manifest(self, definition_hash: str) -> dict[str, Any]:
        """Render a batch/v1 Job manifest."""
        return {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {
                "name": self.instance_name(definition_hash),
                "namespace": self.namespace,
                "labels": dict(self.labels),
                "annotations": {HASH_ANNOTATION: definition_hash},
            },
            "spec": {
                "backoffLimit": self.backoff_limit,
                "template": {
                    "metadata": {"labels": dict(self.labels)},
                    "spec": {
                        "restartPolicy": "OnFailure",
                        "containers": [
                            {
                                "name": "mariadb-database-create",
                                "image": self.image,
                                "command": list(self.command),
                                "env": [
                                    {
                                        "name": e.name,
                                        "valueFrom": {
                                            "secretKeyRef": {"name": e.secret, "key": e.key}
                                        },
                                    }
                                    for e in self.env
                                ],
                            }
                        ],
                    },
                },
            },
        }


def label_value(value: str) -> str:
    """Fit an object name into a label value.

    Names longer than a label value allows are cut and suffixed with a short
    hash of the full name, so distinct names stay distinct.
    """
    if len(value) <= MAX_LABEL_VALUE_LENGTH:
        return value
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_SUFFIX_LENGTH]
    prefix = value[: MAX_LABEL_VALUE_LENGTH - HASH_SUFFIX_LENGTH - 1].rstrip("-.")
    return f"{prefix}-{digest}"


def _check_identifier(field_name: str, value: str) -> str:
    if not re.match(VALID_SQL_IDENTIFIER_PATTERN, value):
        raise JobDefinitionError(
            f"{field_name} must match {VALID_SQL_IDENTIFIER_PATTERN}: {value!r}"
        )
    return value


def database_job(claim: MariaDBDatabase, connection: StoreConnection) -> JobDefinition:
    """Build the database creation job for a claim.

    Args:
        claim: The MariaDBDatabase being reconciled.
        connection: Name, root secret and image of the resolved backing store.

    Raises:
        JobDefinitionError: If the claim has no secret or carries names that
            are not plain SQL identifiers.
    """
    if not claim.spec.secret:
        raise JobDefinitionError(f"MariaDBDatabase {claim.identity} has no spec.secret")

    db = _check_identifier("spec.name", claim.database_name)
    charset = _check_identifier("spec.defaultCharacterSet", claim.spec.default_character_set)
    collation = _check_identifier("spec.defaultCollation", claim.spec.default_collation)

    # Job names are DNS labels: no underscores, no leading or trailing dash
    job_base = db.lower().replace("_", "-").strip("-") or "database"

    script = DATABASE_SCRIPT.format(
        host=connection.name, db=db, charset=charset, collation=collation
    )

    return JobDefinition(
        name=f"{job_base}-database-sync",
        namespace=claim.namespace,
        image=connection.container_image,
        command=["/bin/bash", "-c", script],
        env=[
            SecretEnv(name="MYSQL_PWD", secret=connection.secret, key=DB_ROOT_PASSWORD_KEY),
            SecretEnv(name="DatabasePassword", secret=claim.spec.secret, key=DATABASE_PASSWORD_KEY),
        ],
        labels={
            "app": "mariadbdatabase",
            "owner": label_value(claim.name),
            "dbName": label_value(connection.name),
        },
    )
