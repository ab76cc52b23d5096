"""Tests for ManifestFactory and the startup command."""

import pytest

from kflow.models.job import JobOptions
from kflow.services.manifests import (
    ARTIFACT_DATA_KEY,
    GPU_RESOURCE,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    PIP_CACHE_PVC_NAME,
    WORKSPACE_MOUNT_PATH,
    ManifestFactory,
    build_startup_command,
)


def make_options(**overrides) -> JobOptions:
    values = {
        "name": "ptjob-123456",
        "namespace": "team-a",
        "image": "pytorch/pytorch:2.1.0-cuda12.1-cudnn8-runtime",
        "gpu": 2,
        "cpu": "4",
        "memory": "32Gi",
        "script_path": "/w/s.py",
        "pip": [],
        "apt": [],
        "auto_pvc_for_pip": True,
    }
    values.update(overrides)
    return JobOptions(**values)


@pytest.fixture
def factory() -> ManifestFactory:
    """Create a manifest factory."""
    return ManifestFactory()


def master_of(manifest: dict) -> dict:
    return manifest["spec"]["pytorchReplicaSpecs"]["Master"]


def container_of(manifest: dict) -> dict:
    return master_of(manifest)["template"]["spec"]["containers"][0]


class TestStartupCommand:
    """Tests for the container startup command."""

    def test_pip_only(self):
        """Test pip installs precede the script."""
        command = build_startup_command(make_options(pip=["a", "b"]))
        assert command == "pip install a b && python /w/s.py"

    def test_apt_only(self):
        """Test apt installs are preceded by an index update."""
        command = build_startup_command(make_options(apt=["libgdal-dev"]))
        assert command == "apt-get update && apt-get install -y libgdal-dev && python /w/s.py"

    def test_apt_before_pip(self):
        """Test the fixed apt, pip, script order."""
        command = build_startup_command(make_options(apt=["git", "curl"], pip=["torch"]))
        assert command == (
            "apt-get update && apt-get install -y git curl && pip install torch && python /w/s.py"
        )

    def test_script_only(self):
        """Test that no install steps are emitted without dependencies."""
        assert build_startup_command(make_options()) == "python /w/s.py"


class TestBuildTrainingJob:
    """Tests for PyTorchJob bodies."""

    def test_identity_and_label(self, factory: ManifestFactory):
        """Test API version, kind, metadata and the ownership label."""
        manifest = factory.build_training_job(make_options(), "ptjob-123456-artifact")

        assert manifest["apiVersion"] == "kubeflow.org/v1"
        assert manifest["kind"] == "PyTorchJob"
        assert manifest["metadata"]["name"] == "ptjob-123456"
        assert manifest["metadata"]["namespace"] == "team-a"
        assert manifest["metadata"]["labels"] == {MANAGED_BY_LABEL: MANAGED_BY_VALUE}

        master = master_of(manifest)
        assert master["replicas"] == 1
        assert master["restartPolicy"] == "OnFailure"

    def test_container(self, factory: ManifestFactory):
        """Test image, shell command and resources of the master container."""
        manifest = factory.build_training_job(make_options(pip=["a"]), "cm")
        container = container_of(manifest)

        assert container["image"] == "pytorch/pytorch:2.1.0-cuda12.1-cudnn8-runtime"
        assert container["command"] == ["/bin/sh", "-c", "pip install a && python /w/s.py"]
        assert container["resources"]["limits"] == {
            GPU_RESOURCE: "2",
            "cpu": "4",
            "memory": "32Gi",
        }
        assert container["resources"]["requests"] == {"cpu": "4", "memory": "32Gi"}

    @pytest.mark.parametrize("gpu", [0, 1, 8])
    def test_resource_quantities_are_strings(self, factory: ManifestFactory, gpu: int):
        """Test that every resource quantity is sent as a string."""
        manifest = factory.build_training_job(make_options(gpu=gpu), "cm")
        resources = container_of(manifest)["resources"]

        assert resources["limits"][GPU_RESOURCE] == str(gpu)
        assert all(isinstance(v, str) for v in resources["limits"].values())
        assert all(isinstance(v, str) for v in resources["requests"].values())

    def test_mounts_artifact_and_pip_cache(self, factory: ManifestFactory):
        """Test the code ConfigMap and pip cache claim are both mounted."""
        manifest = factory.build_training_job(make_options(), "ptjob-123456-artifact")
        pod_spec = master_of(manifest)["template"]["spec"]

        volumes = {v["name"]: v for v in pod_spec["volumes"]}
        assert len(volumes) == 2
        config_maps = [v["configMap"]["name"] for v in volumes.values() if "configMap" in v]
        claims = [
            v["persistentVolumeClaim"]["claimName"]
            for v in volumes.values()
            if "persistentVolumeClaim" in v
        ]
        assert config_maps == ["ptjob-123456-artifact"]
        assert claims == [PIP_CACHE_PVC_NAME]

        mount_paths = [m["mountPath"] for m in container_of(manifest)["volumeMounts"]]
        assert WORKSPACE_MOUNT_PATH in mount_paths
        assert "/root/.cache/pip" in mount_paths

    def test_no_pip_cache_when_disabled(self, factory: ManifestFactory):
        """Test the pip cache claim is omitted when not requested."""
        manifest = factory.build_training_job(make_options(auto_pvc_for_pip=False), "cm")
        pod_spec = master_of(manifest)["template"]["spec"]

        assert all("persistentVolumeClaim" not in v for v in pod_spec["volumes"])
        assert len(container_of(manifest)["volumeMounts"]) == 1

    def test_options_not_mutated(self, factory: ManifestFactory):
        """Test that building leaves the options untouched."""
        options = make_options(pip=["a"], apt=["b"])
        before = options.model_dump()

        factory.build_training_job(options, "cm")

        assert options.model_dump() == before


class TestSupportingResources:
    """Tests for ConfigMap and PVC bodies."""

    def test_artifact_config_map(self, factory: ManifestFactory):
        """Test the encoded archive is stored under the artifact key."""
        config_map = factory.build_artifact_config_map("team-a", "job-artifact", "QUJD")

        assert config_map["apiVersion"] == "v1"
        assert config_map["kind"] == "ConfigMap"
        assert config_map["metadata"] == {"name": "job-artifact", "namespace": "team-a"}
        assert config_map["data"] == {ARTIFACT_DATA_KEY: "QUJD"}

    def test_pvc(self, factory: ManifestFactory):
        """Test a ReadWriteOnce claim with the requested size."""
        pvc = factory.build_pvc("pip-cache-pvc", "team-a", "10Gi")

        assert pvc["kind"] == "PersistentVolumeClaim"
        assert pvc["metadata"]["name"] == "pip-cache-pvc"
        assert pvc["spec"]["accessModes"] == ["ReadWriteOnce"]
        assert pvc["spec"]["resources"] == {"requests": {"storage": "10Gi"}}


class TestJobOptions:
    """Tests for job option validation."""

    def test_csv_dependencies_are_split(self):
        """Test comma-separated dependency strings become lists."""
        options = make_options(pip="torch, numpy ,,", apt="git")
        assert options.pip == ["torch", "numpy"]
        assert options.apt == ["git"]

    def test_camel_case_aliases(self):
        """Test that the camelCase field names are accepted."""
        options = JobOptions.model_validate(
            {
                "name": "job-1",
                "namespace": "team-a",
                "image": "img",
                "scriptPath": "train.py",
                "autoPVCforPip": False,
            }
        )
        assert options.script_path == "train.py"
        assert options.auto_pvc_for_pip is False

    @pytest.mark.parametrize("name", ["Job_1", "-job", "job-", "a" * 64])
    def test_invalid_names_rejected(self, name: str):
        """Test that names must be DNS-1123 labels."""
        with pytest.raises(ValueError):
            make_options(name=name)
