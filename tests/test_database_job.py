"""Tests for the database creation job definition."""

from __future__ import annotations

import re

import pytest
from k8s_mock import make_claim

from mariadb_operator.database_job import (
    HASH_ANNOTATION,
    MAX_JOB_NAME_LENGTH,
    MAX_LABEL_VALUE_LENGTH,
    JobDefinitionError,
    database_job,
    label_value,
)
from mariadb_operator.models import StoreConnection

CONNECTION = StoreConnection(name="openstack", secret="osp-secret", container_image="mariadb:10")
DNS_1123_LABEL = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class TestDatabaseJob:
    """Tests for database_job()."""

    def test_definition(self) -> None:
        definition = database_job(make_claim("keystone", secret="keystone-secret"), CONNECTION)

        assert definition.name == "keystone-database-sync"
        assert definition.namespace == "openstack"
        assert definition.image == "mariadb:10"
        assert definition.command[:2] == ["/bin/bash", "-c"]
        script = definition.command[2]
        assert script.startswith("export DatabasePassword=${DatabasePassword:?")
        assert "mysql -h openstack -u root -P 3306" in script
        assert "CREATE DATABASE IF NOT EXISTS keystone;" in script
        assert "CHARACTER SET 'utf8' COLLATE 'utf8_general_ci'" in script
        assert [(e.name, e.secret, e.key) for e in definition.env] == [
            ("MYSQL_PWD", "osp-secret", "DbRootPassword"),
            ("DatabasePassword", "keystone-secret", "DatabasePassword"),
        ]
        assert definition.labels["owner"] == "keystone"

    def test_explicit_database_name(self) -> None:
        definition = database_job(make_claim("nova-api", database="nova_api"), CONNECTION)

        assert definition.name == "nova-api-database-sync"
        assert "CREATE DATABASE IF NOT EXISTS nova_api;" in definition.command[2]

    def test_missing_secret(self) -> None:
        with pytest.raises(JobDefinitionError, match="spec.secret"):
            database_job(make_claim(secret=None), CONNECTION)

    def test_rejects_unsafe_database_name(self) -> None:
        with pytest.raises(JobDefinitionError, match="spec.name"):
            database_job(make_claim(database="x; DROP DATABASE mysql"), CONNECTION)

    def test_rejects_unsafe_collation(self) -> None:
        claim = make_claim()
        claim.spec.default_collation = "utf8' OR '1"

        with pytest.raises(JobDefinitionError, match="defaultCollation"):
            database_job(claim, CONNECTION)


class TestJobDefinitionHash:
    """Tests for content hashing."""

    def test_hash_is_stable(self) -> None:
        first = database_job(make_claim(), CONNECTION).compute_hash()
        second = database_job(make_claim(), CONNECTION).compute_hash()

        assert first == second
        assert len(first) == 64

    def test_hash_changes_with_image(self) -> None:
        other = StoreConnection(name="openstack", secret="osp-secret", container_image="mariadb:11")

        assert (
            database_job(make_claim(), CONNECTION).compute_hash()
            != database_job(make_claim(), other).compute_hash()
        )

    def test_hash_changes_with_secret(self) -> None:
        assert (
            database_job(make_claim(secret="a"), CONNECTION).compute_hash()
            != database_job(make_claim(secret="b"), CONNECTION).compute_hash()
        )


class TestJobManifest:
    """Tests for the rendered Job."""

    def test_manifest(self) -> None:
        definition = database_job(make_claim(), CONNECTION)
        definition_hash = definition.compute_hash()

        manifest = definition.to_manifest(definition_hash)

        assert manifest["kind"] == "Job"
        assert manifest["metadata"]["name"] == f"keystone-database-sync-{definition_hash[:8]}"
        assert manifest["metadata"]["annotations"] == {HASH_ANNOTATION: definition_hash}
        pod = manifest["spec"]["template"]["spec"]
        assert pod["restartPolicy"] == "OnFailure"
        env = pod["containers"][0]["env"]
        assert env[0] == {
            "name": "MYSQL_PWD",
            "valueFrom": {"secretKeyRef": {"name": "osp-secret", "key": "DbRootPassword"}},
        }

    def test_instance_name_length_bounded(self) -> None:
        definition = database_job(make_claim("a" * 60, database="b" * 60), CONNECTION)

        name = definition.instance_name(definition.compute_hash())

        assert len(name) <= MAX_JOB_NAME_LENGTH
        assert not name.startswith("-")

    def test_underscore_names_give_valid_object_names(self) -> None:
        definition = database_job(make_claim(database="_keystone_"), CONNECTION)

        name = definition.instance_name(definition.compute_hash())

        assert definition.name == "keystone-database-sync"
        assert re.match(DNS_1123_LABEL, name)

    def test_instance_name_never_starts_with_dash(self) -> None:
        definition = database_job(make_claim(), CONNECTION).model_copy(
            update={"name": "-" * 70}
        )

        name = definition.instance_name("abcdef0123")

        assert name == "job-abcdef01"


class TestLabelValue:
    """Tests for label_value()."""

    def test_short_value_unchanged(self) -> None:
        assert label_value("keystone") == "keystone"

    def test_long_value_is_bounded_and_distinct(self) -> None:
        first = label_value("a" * 70)
        second = label_value("a" * 71)

        assert len(first) <= MAX_LABEL_VALUE_LENGTH
        assert re.match(DNS_1123_LABEL, first)
        assert first != second

    def test_job_labels_fit(self) -> None:
        connection = StoreConnection(name="g" * 80, secret="osp-secret", container_image="mariadb:10")

        definition = database_job(make_claim("k" * 70), connection)

        assert all(len(v) <= MAX_LABEL_VALUE_LENGTH for v in definition.labels.values())
