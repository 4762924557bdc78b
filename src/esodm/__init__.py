"""esodm — Typed async access layer for Elasticsearch collections.

Quick start::

    from esodm import ElasticsearchBackend, ModelConfig, Repository

    backend = ElasticsearchBackend()
    await backend.initialize()

    users = Repository(ModelConfig(tenant="acme", base_name="users"), backend)
    window = await users.search({"query": {"match": {"name": "jane"}}}, 0, 20)
"""

from esodm.backend.elasticsearch import ElasticsearchBackend
from esodm.core.bulk import BulkArray
from esodm.joint import JointRepository
from esodm.models.config import ModelConfig
from esodm.models.document import Document
from esodm.repository import Repository

__version__ = "0.1.0"

__all__ = ["BulkArray", "Document", "ElasticsearchBackend", "JointRepository", "ModelConfig", "Repository", "__version__"]
