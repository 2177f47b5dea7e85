"""
Scene-graph providers consumed by the engine.

Every provider exposes the same three coroutines:

  - ``get_all_leaf_ids()``                         ids of the default traversal (leaves only)
  - ``get_bulk_properties(ids, property_name_filter)`` ``[{"id", "properties": [...]}]``
  - ``enumerate_subtree(root_id)``                 every id under root, non-leaf nodes included

Traversals are iterative so deep hierarchies cannot exhaust the stack.
"""

import asyncio
import json
import logging
import sys
import time

import ijson
import requests
from tqdm import tqdm

from . import config
from .errors import MalformedPropertyError, MissingProviderError, ProviderFetchError
from .models import RawPropertyRecord
from .resolver import filter_properties
from .utils import base_suffix, iter_jsonl, open_binary

logger = logging.getLogger(__name__)


def iter_subtree(root_id, children_of):
    """Pre-order walk from root_id using an explicit stack."""
    stack = [root_id]
    seen = set()
    while stack:
        node_id = stack.pop()
        if node_id in seen:
            continue
        seen.add(node_id)
        yield node_id
        children = children_of(node_id)
        if children:
            stack.extend(reversed(children))


def iter_leaves(root_ids, children_of):
    """Yield leaf ids reachable from the roots, in pre-order."""
    for root_id in root_ids:
        for node_id in iter_subtree(root_id, children_of):
            if not children_of(node_id):
                yield node_id


def filter_payload_properties(properties, names):
    """Apply a property-name filter to raw payload dicts.

    Entries that are not valid property records are kept so the scanner can
    report them as malformed.
    """
    if not names or not isinstance(properties, list):
        return properties
    kept = []
    for prop in properties:
        try:
            record = RawPropertyRecord.from_payload(prop)
        except MalformedPropertyError:
            kept.append(prop)
            continue
        if filter_properties([record], names):
            kept.append(prop)
    return kept


class SceneGraphProvider:
    async def get_all_leaf_ids(self):
        raise NotImplementedError

    async def get_bulk_properties(self, ids, property_name_filter=None):
        raise NotImplementedError

    async def enumerate_subtree(self, root_id):
        raise NotImplementedError


class InMemorySceneGraph(SceneGraphProvider):
    """Scene graph held in memory: {id: {"children": [...], "properties": [...]}}."""

    def __init__(self, nodes, root_ids=None):
        self.nodes = dict(nodes)
        self._children = {node_id: list(node.get("children") or []) for node_id, node in self.nodes.items()}
        for node_id, node in self.nodes.items():
            parent = node.get("parent")
            if parent is not None and parent in self._children and node_id not in self._children[parent]:
                self._children[parent].append(node_id)
        if root_ids is None:
            referenced = {child for children in self._children.values() for child in children}
            root_ids = [node_id for node_id in self.nodes if node_id not in referenced]
        self.root_ids = list(root_ids)

    def children_of(self, node_id):
        return self._children.get(node_id, [])

    async def get_all_leaf_ids(self):
        return list(iter_leaves(self.root_ids, self.children_of))

    async def get_bulk_properties(self, ids, property_name_filter=None):
        results = []
        for node_id in ids:
            node = self.nodes.get(node_id)
            if node is None:
                continue
            properties = filter_payload_properties(node.get("properties", []), property_name_filter)
            results.append({"id": node_id, "properties": properties})
        return results

    async def enumerate_subtree(self, root_id):
        if root_id not in self.nodes:
            logger.warning("[!] Subtree root %s not found in scene graph.", root_id)
            return []
        return list(iter_subtree(root_id, self.children_of))


def _iter_dump_nodes(path):
    suffix = base_suffix(path)
    if suffix == ".jsonl":
        yield from iter_jsonl(path)
        return
    if suffix != ".json":
        raise MissingProviderError(f"Unsupported scene dump format: {path}", {"path": str(path)})
    with open_binary(path) as fh:
        start = fh.peek(2048) if hasattr(fh, "peek") else b""
    first = next((chr(c) for c in start if not chr(c).isspace()), "[")
    prefix = "nodes.item" if first == "{" else "item"
    with open_binary(path) as fh:
        yield from ijson.items(fh, prefix, use_float=True)


def load_scene_dump(path, show_progress=config.SHOW_PROGRESS_BAR):
    """Stream a scene dump (.json / .jsonl, optionally .gz / .zst) into memory."""
    nodes = {}
    skipped = 0
    try:
        stream = _iter_dump_nodes(path)
        for node in tqdm(
            stream,
            desc="Loading scene dump",
            unit=" node",
            miniters=10000,
            disable=not (show_progress and sys.stderr.isatty()),
        ):
            if not isinstance(node, dict) or node.get("id") is None:
                skipped += 1
                continue
            nodes[node["id"]] = node
    except FileNotFoundError as exc:
        raise MissingProviderError(f"Scene dump not found: {path}", {"path": str(path)}) from exc
    if skipped:
        logger.warning("[!] Skipped %s scene dump entries without an id.", skipped)
    logger.info("[+] Loaded %s scene nodes from %s.", f"{len(nodes):,}", path)
    return InMemorySceneGraph(nodes)


def flatten_property_groups(groups):
    """{"Element": {"Plot": "425"}} -> [{"category", "displayName", "displayValue"}]."""
    flat = []
    if not isinstance(groups, dict):
        return flat
    for category, values in groups.items():
        if not isinstance(values, dict):
            flat.append({"category": "", "displayName": category, "displayValue": values})
            continue
        stack = [(category, values)]
        while stack:
            prefix, group = stack.pop(0)
            for name, value in group.items():
                if isinstance(value, dict):
                    stack.append((f"{prefix}/{name}", value))
                    continue
                if isinstance(value, list):
                    value = ", ".join(str(v) for v in value)
                flat.append({"category": prefix, "displayName": name, "displayValue": value})
    return flat


class RemoteSceneGraphProvider(SceneGraphProvider):
    """Model Derivative metadata endpoints (object tree + properties query).

    The access token is supplied by the caller; obtaining it is out of scope.
    """

    def __init__(
        self,
        urn,
        model_guid,
        access_token,
        base_url=config.API_BASE_URL,
        timeout=config.API_TIMEOUT,
        max_retries=config.API_MAX_RETRIES,
        page_limit=config.API_PAGE_LIMIT,
    ):
        if not urn or not model_guid:
            raise MissingProviderError("A model urn and viewable guid are required.")
        self.urn = urn
        self.model_guid = model_guid
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.page_limit = page_limit
        self._children = None
        self._root_ids = None
        self.stats = {"network_calls": 0, "network_errors": 0, "retries": 0}

    @property
    def _metadata_url(self):
        return f"{self.base_url}/{self.urn}/metadata/{self.model_guid}"

    @property
    def _headers(self):
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    def _request(self, method, url, **kwargs):
        last_status = None
        for attempt in range(self.max_retries):
            try:
                if method == "POST":
                    response = requests.post(url, headers=self._headers, timeout=self.timeout, **kwargs)
                else:
                    response = requests.get(url, headers=self._headers, timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                self.stats["network_errors"] += 1
                logger.warning("[!] Request to %s failed: %s", url, exc)
                last_status = None
                self.stats["retries"] += 1
                time.sleep(0.5 * (2**attempt))
                continue
            self.stats["network_calls"] += 1
            last_status = response.status_code
            if last_status == 200:
                return response.json()
            # 202: the derivative is still being processed
            if last_status in {202, 429, 500, 502, 503, 504}:
                sleep_for = 2**attempt
                logger.warning("[!] HTTP %s for %s. Sleeping %ss...", last_status, url, sleep_for)
                self.stats["retries"] += 1
                time.sleep(sleep_for)
                continue
            break
        self.stats["network_errors"] += 1
        raise ProviderFetchError(
            "FETCH_FAILED",
            f"Scene graph request failed: {method} {url}",
            {"status": last_status, "url": url},
        )

    def _load_tree(self):
        if self._children is not None:
            return
        payload = self._request("GET", self._metadata_url, params={"forceget": "true"})
        objects = (payload.get("data") or {}).get("objects") or []
        children = {}
        root_ids = []
        stack = [(obj, None) for obj in objects]
        while stack:
            obj, parent = stack.pop()
            object_id = obj.get("objectid")
            if object_id is None:
                continue
            kids = obj.get("objects") or []
            children[object_id] = [kid.get("objectid") for kid in kids if kid.get("objectid") is not None]
            if parent is None:
                root_ids.append(object_id)
            stack.extend((kid, object_id) for kid in kids)
        self._children = children
        self._root_ids = root_ids
        logger.info("[+] Loaded object tree with %s nodes.", f"{len(children):,}")

    def _children_of(self, node_id):
        return self._children.get(node_id, [])

    def _leaf_ids(self):
        self._load_tree()
        return list(iter_leaves(self._root_ids, self._children_of))

    def _subtree_ids(self, root_id):
        self._load_tree()
        if root_id not in self._children:
            logger.warning("[!] Subtree root %s not found in object tree.", root_id)
            return []
        return list(iter_subtree(root_id, self._children_of))

    def _query_properties(self, ids, property_name_filter):
        results = []
        offset = 0
        while True:
            body = {
                "query": {"$in": ["objectid", *ids]},
                "pagination": {"offset": offset, "limit": self.page_limit},
            }
            payload = self._request("POST", f"{self._metadata_url}/properties:query", data=json.dumps(body))
            collection = (payload.get("data") or {}).get("collection") or []
            for obj in collection:
                properties = flatten_property_groups(obj.get("properties"))
                results.append(
                    {
                        "id": obj.get("objectid"),
                        "properties": filter_payload_properties(properties, property_name_filter),
                    }
                )
            pagination = payload.get("pagination") or {}
            total = pagination.get("totalResults")
            offset += len(collection)
            if not collection or total is None or offset >= total:
                break
        return results

    async def get_all_leaf_ids(self):
        return await asyncio.to_thread(self._leaf_ids)

    async def get_bulk_properties(self, ids, property_name_filter=None):
        if not ids:
            return []
        return await asyncio.to_thread(self._query_properties, list(ids), property_name_filter)

    async def enumerate_subtree(self, root_id):
        return await asyncio.to_thread(self._subtree_ids, root_id)
