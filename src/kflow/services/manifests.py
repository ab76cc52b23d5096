"""Builders for the Kubernetes resources that make up a training run."""

from __future__ import annotations

import logging
from typing import Any

from kubernetes import client

from kflow.models.job import JobOptions

logger = logging.getLogger(__name__)

# Training operator resource coordinates
TRAINING_JOB_GROUP = "kubeflow.org"
TRAINING_JOB_VERSION = "v1"
TRAINING_JOB_PLURAL = "pytorchjobs"
TRAINING_JOB_KIND = "PyTorchJob"

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "kflow"

# Artifact ConfigMap
ARTIFACT_DATA_KEY = "artifact.tar.gz.base64"
WORKSPACE_MOUNT_PATH = "/workspace"
CODE_VOLUME_NAME = "job-code"

# Shared pip cache
PIP_CACHE_PVC_NAME = "pip-cache-pvc"
PIP_CACHE_VOLUME_NAME = "pip-cache"
PIP_CACHE_MOUNT_PATH = "/root/.cache/pip"

GPU_RESOURCE = "nvidia.com/gpu"
CONTAINER_NAME = "pytorch"
MASTER_RESTART_POLICY = "OnFailure"

Manifest = dict[str, Any]


def build_startup_command(options: JobOptions) -> str:
    """Build the shell command run by the master container.

    apt installs come first, then pip installs, then the script, joined with ``&&``.
    """
    steps: list[str] = []
    if options.apt:
        steps.append("apt-get update")
        steps.append(f"apt-get install -y {' '.join(options.apt)}")
    if options.pip:
        steps.append(f"pip install {' '.join(options.pip)}")
    steps.append(f"python {options.script_path}")
    return " && ".join(steps)


class ManifestFactory:
    """Builds PVC, ConfigMap and PyTorchJob bodies as plain dicts.

    Resources are assembled from the typed ``kubernetes.client`` models and
    serialized to the JSON shape the API server expects. Nothing here talks to
    the cluster.

    Example:
        ```python
        factory = ManifestFactory()
        config_map = factory.build_artifact_config_map("team-a", "job-1-artifact", payload)
        job = factory.build_training_job(options, "job-1-artifact")
        ```
    """

    def __init__(self) -> None:
        self._api_client = client.ApiClient()

    def _serialize(self, obj: object) -> Manifest:
        return self._api_client.sanitize_for_serialization(obj)

    def build_pvc(self, name: str, namespace: str, size: str) -> Manifest:
        """Build a ReadWriteOnce PersistentVolumeClaim requesting ``size`` of storage."""
        pvc = client.V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            spec=client.V1PersistentVolumeClaimSpec(
                access_modes=["ReadWriteOnce"],
                resources=client.V1VolumeResourceRequirements(requests={"storage": size}),
            ),
        )
        return self._serialize(pvc)

    def build_artifact_config_map(self, namespace: str, name: str, base64_payload: str) -> Manifest:
        """Wrap an encoded code archive in a ConfigMap."""
        config_map = client.V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            data={ARTIFACT_DATA_KEY: base64_payload},
        )
        return self._serialize(config_map)

    def build_training_job(self, options: JobOptions, artifact_config_map_name: str) -> Manifest:
        """Build a single-master PyTorchJob for ``options``.

        Args:
            options: Job parameters
            artifact_config_map_name: ConfigMap holding the encoded code archive

        Returns:
            PyTorchJob body ready for submission
        """
        volume_mounts = [
            client.V1VolumeMount(name=CODE_VOLUME_NAME, mount_path=WORKSPACE_MOUNT_PATH),
        ]
        volumes = [
            client.V1Volume(
                name=CODE_VOLUME_NAME,
                config_map=client.V1ConfigMapVolumeSource(name=artifact_config_map_name),
            ),
        ]

        if options.auto_pvc_for_pip:
            volume_mounts.append(
                client.V1VolumeMount(name=PIP_CACHE_VOLUME_NAME, mount_path=PIP_CACHE_MOUNT_PATH)
            )
            volumes.append(
                client.V1Volume(
                    name=PIP_CACHE_VOLUME_NAME,
                    persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                        claim_name=PIP_CACHE_PVC_NAME,
                    ),
                )
            )

        # GPUs are limits only. Quantities are strings in the resource model.
        container = client.V1Container(
            name=CONTAINER_NAME,
            image=options.image,
            command=["/bin/sh", "-c", build_startup_command(options)],
            resources=client.V1ResourceRequirements(
                limits={
                    GPU_RESOURCE: str(options.gpu),
                    "cpu": options.cpu,
                    "memory": options.memory,
                },
                requests={"cpu": options.cpu, "memory": options.memory},
            ),
            volume_mounts=volume_mounts,
        )

        template = client.V1PodTemplateSpec(
            spec=client.V1PodSpec(containers=[container], volumes=volumes),
        )

        logger.debug(
            f"Built {TRAINING_JOB_KIND} {options.namespace}/{options.name} "
            f"(gpu={options.gpu}, pip={len(options.pip)}, apt={len(options.apt)})"
        )

        return {
            "apiVersion": f"{TRAINING_JOB_GROUP}/{TRAINING_JOB_VERSION}",
            "kind": TRAINING_JOB_KIND,
            "metadata": {
                "name": options.name,
                "namespace": options.namespace,
                "labels": {MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            },
            "spec": {
                "pytorchReplicaSpecs": {
                    "Master": {
                        "replicas": 1,
                        "restartPolicy": MASTER_RESTART_POLICY,
                        "template": self._serialize(template),
                    }
                }
            },
        }
