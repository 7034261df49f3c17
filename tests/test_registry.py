import asyncio

from core.registry import SharedRegistry


def test_snapshots_are_immutable_and_replaced_on_write(make_plugin):
    a, b = make_plugin("a"), make_plugin("b")

    async def scenario():
        registry = SharedRegistry()
        await registry.add_plugin(a)
        before = await registry.plugins()
        await registry.add_plugin(b)
        after = await registry.plugins()
        return before, after

    before, after = asyncio.run(scenario())
    assert before == (a,)
    assert after == (a, b)


def test_add_plugin_is_idempotent_per_handle(make_plugin):
    plugin = make_plugin()

    async def scenario():
        registry = SharedRegistry()
        await registry.add_plugin(plugin)
        await registry.add_plugin(plugin)
        return registry.plugin_count

    assert asyncio.run(scenario()) == 1


def test_remove_plugin_by_identity(make_plugin):
    first = make_plugin("same")
    second = make_plugin("same")

    async def scenario():
        registry = SharedRegistry([first, second])
        removed = await registry.remove_plugin(first)
        removed_again = await registry.remove_plugin(first)
        return removed, removed_again, await registry.plugins()

    removed, removed_again, remaining = asyncio.run(scenario())
    assert removed is True
    assert removed_again is False
    assert remaining == (second,)


def test_find_plugin_and_clear(make_plugin):
    a, b = make_plugin("a"), make_plugin("b")

    async def scenario():
        registry = SharedRegistry([a, b])
        found = await registry.find_plugin("b")
        missing = await registry.find_plugin("c")
        cleared = await registry.clear_plugins()
        return found, missing, cleared, await registry.plugins()

    found, missing, cleared, remaining = asyncio.run(scenario())
    assert found is b
    assert missing is None
    assert cleared == (a, b)
    assert remaining == ()


def test_connections(make_connection):
    one = make_connection("irc.one.net")
    two = make_connection("irc.two.net")

    async def scenario():
        registry = SharedRegistry()
        await registry.add_connection(one)
        await registry.add_connection(two)
        await registry.add_connection(one)
        found = await registry.find_connection("irc.two.net")
        await registry.remove_connection(two)
        gone = await registry.find_connection("irc.two.net")
        return found, gone, await registry.connections()

    found, gone, remaining = asyncio.run(scenario())
    assert found is two
    assert gone is None
    assert remaining == (one,)
