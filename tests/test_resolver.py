"""Tests for single-environment resolution behaviour."""

import asyncio
import logging
import threading
from datetime import datetime, timezone

import pytest

from unilock.cache.store import MemoryContentStore
from unilock.catalog.memory import InMemoryCatalog
from unilock.errors import CatalogLookupError, ConfigurationError, ResolutionCancelled, UnsatisfiableError
from unilock.resolver import Resolver, resolve
from unilock.resolver.conflicts import Cause, minimize
from unilock.versioning.models import Environment, ResolutionMode, ResolverOptions
from unilock.versioning.parser import parse_requirement

LINUX = Environment("3.11", "linux", "x86_64")


class FlakyCatalog(InMemoryCatalog):
    """Catalog that fails lookups for selected names."""

    def __init__(self, failing):
        super().__init__()
        self.failing = set(failing)

    async def list_versions(self, name):
        if name in self.failing:
            raise RuntimeError(f"lookup of {name} timed out")
        return await super().list_versions(name)


def run_resolve(catalog, roots, envs=(LINUX,), **kwargs):
    return asyncio.run(resolve(catalog, roots, list(envs), **kwargs))


def chosen(graph, env=LINUX):
    return {name: str(pv.version) for name, pv in graph.for_environment(env).items()}


def assert_sound(graph):
    """Every active requirement of every chosen version is met by the graph."""
    for env in graph.environments:
        packages = graph.for_environment(env)
        for pv in packages.values():
            for dep in pv.requires:
                if not dep.applies_in(env):
                    continue
                assert dep.name in packages, f"{pv} needs {dep} on {env}"
                assert dep.allows(packages[dep.name].version, prereleases=True)


def scenario_catalog():
    catalog = InMemoryCatalog()
    catalog.add("a", "1.0", requires=["b<2.0"])
    catalog.add("b", "1.0")
    catalog.add("b", "2.5")
    return catalog


class TestBasicResolution:
    """Tests for straightforward single-environment solves."""

    def test_transitive_constraint_limits_choice(self):
        """a 1.0 requires b<2.0, so b 1.0 is chosen over the newer 2.5."""
        graph = run_resolve(scenario_catalog(), ["a>=1.0", "b>=1.0"])

        assert chosen(graph) == {"a": "1.0", "b": "1.0"}
        assert graph.dependencies(LINUX, "a") == ("b",)
        assert_sound(graph)

    def test_highest_by_default(self):
        graph = run_resolve(scenario_catalog(), ["b"])
        assert chosen(graph) == {"b": "2.5"}

    def test_lowest_mode(self):
        options = ResolverOptions(mode=ResolutionMode.LOWEST)
        graph = run_resolve(scenario_catalog(), ["b"], options=options)
        assert chosen(graph) == {"b": "1.0"}

    def test_empty_roots(self):
        graph = run_resolve(scenario_catalog(), [])
        assert chosen(graph) == {}

    def test_dependency_cycle_terminates(self):
        catalog = InMemoryCatalog()
        catalog.add("a", "1.0", requires=["b"])
        catalog.add("b", "1.0", requires=["a"])

        graph = run_resolve(catalog, ["a"])

        assert chosen(graph) == {"a": "1.0", "b": "1.0"}
        assert graph.dependencies(LINUX, "b") == ("a",)

    def test_backtracks_out_of_bad_choice(self):
        catalog = InMemoryCatalog()
        catalog.add("a", "2.0", requires=["b==2.0"])
        catalog.add("a", "1.0", requires=["b==1.0"])
        catalog.add("c", "1.0", requires=["b<2.0"])
        catalog.add("b", "1.0")
        catalog.add("b", "2.0")

        graph = run_resolve(catalog, ["a", "c"])

        assert chosen(graph) == {"a": "1.0", "b": "1.0", "c": "1.0"}
        assert_sound(graph)

    def test_backjump_is_logged(self, caplog):
        catalog = InMemoryCatalog()
        catalog.add("a", "2.0", requires=["b==2.0"])
        catalog.add("a", "1.0", requires=["b==1.0"])
        catalog.add("c", "1.0", requires=["b<2.0"])
        catalog.add("b", "1.0")
        catalog.add("b", "2.0")

        with caplog.at_level(logging.DEBUG, logger="unilock.resolver.engine"):
            run_resolve(catalog, ["a", "c"])

        events = [getattr(r, "event", None) for r in caplog.records]
        assert "decision" in events
        assert "backjump" in events

    def test_requirements_accept_parsed_objects(self):
        graph = run_resolve(scenario_catalog(), [parse_requirement("b<2")])
        assert chosen(graph) == {"b": "1.0"}

    def test_deterministic(self):
        first = run_resolve(scenario_catalog(), ["b>=1.0", "a>=1.0"])
        second = run_resolve(scenario_catalog(), ["a>=1.0", "b>=1.0"])
        assert first.pins() == second.pins()


class TestCandidateFiltering:
    """Tests for pre-release, yanked and date filtering."""

    def test_prereleases_excluded_by_default(self):
        catalog = InMemoryCatalog()
        catalog.add("b", "1.0")
        catalog.add("b", "2.0b1")
        assert chosen(run_resolve(catalog, ["b"])) == {"b": "1.0"}

    def test_prerelease_allowed_when_requested(self):
        catalog = InMemoryCatalog()
        catalog.add("b", "1.0")
        catalog.add("b", "2.0b1")
        assert chosen(run_resolve(catalog, ["b>=2.0b1"])) == {"b": "2.0b1"}
        options = ResolverOptions(allow_prereleases=True)
        assert chosen(run_resolve(catalog, ["b"], options=options)) == {"b": "2.0b1"}

    def test_prerelease_used_when_nothing_else_matches(self):
        catalog = InMemoryCatalog()
        catalog.add("c", "1.0a1")
        assert chosen(run_resolve(catalog, ["c"])) == {"c": "1.0a1"}

    def test_yanked_skipped_unless_pinned(self):
        catalog = InMemoryCatalog()
        catalog.add("b", "1.0")
        catalog.add("b", "2.0", yanked=True)
        assert chosen(run_resolve(catalog, ["b"])) == {"b": "1.0"}
        assert chosen(run_resolve(catalog, ["b==2.0"])) == {"b": "2.0"}

    def test_exclude_newer(self):
        catalog = InMemoryCatalog()
        catalog.add("b", "1.0", published="2024-01-01T00:00:00Z")
        catalog.add("b", "2.0", published="2025-06-01T00:00:00Z")
        catalog.add("b", "3.0")
        options = ResolverOptions(exclude_newer=datetime(2025, 1, 1, tzinfo=timezone.utc))

        assert chosen(run_resolve(catalog, ["b"], options=options)) == {"b": "1.0"}


class TestExtras:
    """Tests for optional dependency groups."""

    def _catalog(self):
        catalog = InMemoryCatalog()
        catalog.add("a", "1.0", requires=['b; extra == "fast"', "c"])
        catalog.add("b", "1.0")
        catalog.add("c", "1.0")
        return catalog

    def test_extra_edges_inactive_without_extra(self):
        assert chosen(run_resolve(self._catalog(), ["a"])) == {"a": "1.0", "c": "1.0"}

    def test_extra_edges_active_with_extra(self):
        graph = run_resolve(self._catalog(), ["a[fast]"])
        assert chosen(graph) == {"a": "1.0", "b": "1.0", "c": "1.0"}
        assert graph.dependencies(LINUX, "a") == ("b", "c")

    def test_extra_requested_by_dependency(self):
        catalog = self._catalog()
        catalog.add("d", "1.0", requires=["a[fast]"])
        assert "b" in chosen(run_resolve(catalog, ["a", "d"]))

    def test_self_referential_extras_terminate(self):
        catalog = InMemoryCatalog()
        catalog.add("a", "1.0", requires=['b; extra == "x"'])
        catalog.add("b", "1.0", requires=["a[x]"])

        graph = run_resolve(catalog, ["a[x]"])

        assert chosen(graph) == {"a": "1.0", "b": "1.0"}


class TestFailures:
    """Tests for unsatisfiable input and error reporting."""

    def test_conflict_is_explained(self):
        """Root b>=2.0 against a 1.0's b<2.0 has no solution."""
        with pytest.raises(UnsatisfiableError) as exc:
            run_resolve(scenario_catalog(), ["a>=1.0", "b>=2.0"])

        err = exc.value
        assert err.package == "b"
        assert sorted(str(c) for c in err.conflict) == ["a==1.0 requires b<2.0", "root requires b>=2.0"]
        assert err.chain == (("a", "1.0"),)
        message = str(err)
        assert message.startswith("Because root requires b>=2.0 and a==1.0 requires b<2.0")
        assert "available: 1.0, 2.5" in message

    def test_unknown_package(self):
        with pytest.raises(UnsatisfiableError, match="No versions of missing"):
            run_resolve(scenario_catalog(), ["missing"])

    def test_conflict_is_minimal(self):
        catalog = scenario_catalog()
        catalog.add("z", "1.0")
        with pytest.raises(UnsatisfiableError) as exc:
            run_resolve(catalog, ["b>=3.0", "b>=1.0", "z"])
        assert [str(c) for c in exc.value.conflict] == ["root requires b>=3.0"]

    def test_malformed_requirement(self):
        with pytest.raises(ConfigurationError):
            run_resolve(scenario_catalog(), ["b >="])

    def test_no_environments(self):
        with pytest.raises(ConfigurationError):
            run_resolve(scenario_catalog(), ["b"], envs=())

    @pytest.mark.parametrize("with_store", [False, True])
    def test_lookup_failure(self, with_store):
        catalog = FlakyCatalog(failing=["b"])
        catalog.add("a", "1.0", requires=["b"])
        store = MemoryContentStore() if with_store else None

        with pytest.raises(CatalogLookupError) as exc:
            run_resolve(catalog, ["a"], store=store)
        assert exc.value.package == "b"

    def test_cancellation(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ResolutionCancelled):
            run_resolve(scenario_catalog(), ["a"], cancel=cancel)

    def test_round_limit(self):
        options = ResolverOptions(max_rounds=1)
        with pytest.raises(UnsatisfiableError, match="gave up"):
            run_resolve(scenario_catalog(), ["a"], options=options)


class TestConcurrency:
    """Tests for concurrent catalog access."""

    def test_frontier_looked_up_concurrently(self):
        catalog = InMemoryCatalog(latency=0.01)
        for name in ("a", "b", "c"):
            catalog.add(name, "1.0")

        run_resolve(catalog, ["a", "b", "c"])

        assert catalog.max_in_flight == 3

    def test_resolver_reuses_store_between_runs(self):
        store = MemoryContentStore()
        catalog = scenario_catalog()
        resolver = Resolver(catalog, store=store)
        asyncio.run(resolver.resolve(["a"], [LINUX]))
        lookups = list(catalog.lookups)

        asyncio.run(Resolver(catalog, store=store).resolve(["a"], [LINUX]))

        assert catalog.lookups == lookups


class TestMinimize:
    """Tests for conflict set reduction."""

    def test_keeps_only_necessary_causes(self):
        causes = [Cause(parse_requirement(t)) for t in ("x>=1", "x<1", "x!=0.5", "x>=0")]

        def conflicting(subset):
            texts = {str(c.requirement) for c in subset}
            return {"x>=1", "x<1"} <= texts

        core = minimize(causes, conflicting)
        assert [str(c.requirement) for c in core] == ["x>=1", "x<1"]
