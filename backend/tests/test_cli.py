"""
Tests for the command line runner.
"""

import asyncio
import json

import pytest

from scrapers import cli
from scrapers.manager import ScraperManager


@pytest.fixture
def fake_manager(monkeypatch, fakes, make_listing):
    scraper = fakes.Scraper([make_listing()])
    monkeypatch.setattr(cli, 'ScraperManager', lambda: ScraperManager(registry={'fake': lambda: scraper}))
    return scraper


class TestCli:

    def test_list(self, capsys):
        assert asyncio.run(cli.main(['--list'])) == 0
        assert 'zillow' in capsys.readouterr().out

    def test_scrape_requires_max_price(self):
        with pytest.raises(SystemExit):
            asyncio.run(cli.main(['scrape', '--location', '22203']))

    def test_scrape_rejects_bad_criteria(self):
        with pytest.raises(SystemExit):
            asyncio.run(cli.main(['scrape', '--location', '22203', '--max-price', '0']))

    def test_scrape_prints_matches(self, fake_manager, capsys):
        code = asyncio.run(cli.main([
            'scrape', '--location', 'Arlington VA', '--location', '22203',
            '--max-price', '600000', '--min-beds', '2',
        ]))

        assert code == 0
        out = capsys.readouterr().out
        assert '123 Main St, Arlington, VA 22203' in out
        assert fake_manager.calls[0].locations == ('Arlington VA', '22203')

    def test_scrape_json(self, fake_manager, capsys):
        asyncio.run(cli.main(['scrape', '--location', '22203', '--max-price', '600000', '--json']))

        out = capsys.readouterr().out
        payload = json.loads(out[out.index('{'):out.rindex('}') + 1])
        assert payload['fake'][0]['url'] == 'https://x/1'
