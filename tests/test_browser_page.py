"""Injected scripts run against a static chat document in headless Chromium."""

import asyncio
from contextlib import asynccontextmanager

import pytest
from playwright.async_api import Error as PlaywrightError, async_playwright

from services.youtube.browser.item_source import PlaywrightItemSource
from services.youtube.chat.item_source import DomNode
from tests.conftest import TEXT_TAG

CHAT_HTML = """
<div id="chat-container">
  <yt-live-chat-item-list-renderer>
    <div id="items">
      <yt-live-chat-text-message-renderer id="m1">
        <span id="prepend-chat-badges"></span>
        <span id="author-name">Alice</span>
        <span id="message">hello</span>
      </yt-live-chat-text-message-renderer>
    </div>
  </yt-live-chat-item-list-renderer>
</div>
"""


@asynccontextmanager
async def chat_page(html=CHAT_HTML):
    async with async_playwright() as pw:
        try:
            browser = await pw.chromium.launch()
        except PlaywrightError as e:
            pytest.skip(f"Chromium not available: {e}")
        try:
            page = await browser.new_page()
            await page.set_content(html)
            yield page
        finally:
            await browser.close()


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


@pytest.mark.asyncio
async def test_item_inside_inserted_wrapper_is_reported_once():
    async with chat_page() as page:
        source = PlaywrightItemSource(page)
        await source.bind(lambda item: None, lambda: None)
        container = await source.find_container()
        batches = []
        await source.observe(container, batches.append)

        await page.evaluate(
            """() => {
                const wrapper = document.createElement('div');
                document.getElementById('items').appendChild(wrapper);
                const item = document.createElement('yt-live-chat-text-message-renderer');
                item.id = 'm2';
                wrapper.appendChild(item);
            }"""
        )
        await wait_for(lambda: batches)
        await asyncio.sleep(0.1)

        assert [node.node_id for batch in batches for node in batch] == ["m2"]
        assert batches[0][0].frame is page.main_frame


@pytest.mark.asyncio
async def test_affordance_is_attached_once():
    async with chat_page() as page:
        source = PlaywrightItemSource(page)
        await source.bind(lambda item: None, lambda: None)
        await source.find_container()
        item = source.resolve(DomNode(TEXT_TAG, "m1"))

        assert await item.attach_affordance() is True
        assert await item.attach_affordance() is False
        assert await item.has_affordance() is True
        assert await page.locator(".highlight-btn").count() == 1

        snapshot = await item.snapshot()
        assert snapshot["author"] == "Alice"
        assert snapshot["message"] == "hello"


@pytest.mark.asyncio
async def test_indicator_follows_decorated_element_after_id_reuse():
    async with chat_page() as page:
        source = PlaywrightItemSource(page)
        await source.bind(lambda item: None, lambda: None)
        await source.find_container()
        item = source.resolve(DomNode(TEXT_TAG, "m1"))
        await item.attach_affordance()
        await item.set_indicator(True)

        # A re-render puts another element with the same id ahead of ours
        await page.evaluate(
            """() => {
                const twin = document.createElement('yt-live-chat-text-message-renderer');
                twin.id = 'm1';
                document.getElementById('items').prepend(twin);
            }"""
        )
        await item.set_indicator(False)

        decorated = await page.evaluate(
            """() => {
                const el = document.querySelector('.highlight-btn').closest('yt-live-chat-text-message-renderer');
                return { background: el.style.backgroundColor, active: el.querySelector('.highlight-btn').dataset.active };
            }"""
        )
        assert decorated == {"background": "", "active": "false"}


@pytest.mark.asyncio
async def test_click_delivers_the_attached_item():
    async with chat_page() as page:
        toggles = []
        source = PlaywrightItemSource(page)
        await source.bind(toggles.append, lambda: None)
        await source.find_container()
        item = source.resolve(DomNode(TEXT_TAG, "m1"))
        await item.attach_affordance()

        await page.click(".highlight-btn")
        await wait_for(lambda: toggles)

        assert toggles == [item]
