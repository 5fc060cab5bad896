import io
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from fakes import PROGRAM_ID, FakeLedger
from unicornfactory.cli import main
from unicornfactory.client import FundingClient
from unicornfactory.config import ClientConfig
from unicornfactory.pda import derive_proposal, derive_project


def _run(argv: list) -> tuple:
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        rc = main(argv)
    return rc, out.getvalue(), err.getvalue()


class OfflineCommandTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("unicornfactory.cli.load_config", return_value=ClientConfig())
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_derive_project(self) -> None:
        authority = Pubkey.new_unique()
        rc, out, _ = _run(["derive", "project", "--authority", str(authority)])
        address, bump = derive_project(PROGRAM_ID, authority)
        self.assertEqual(rc, 0)
        self.assertIn(f"project: {address}", out)
        self.assertIn(f"bump: {bump}", out)

    def test_derive_proposal(self) -> None:
        project = Pubkey.new_unique()
        rc, out, _ = _run(["derive", "proposal", "--project", str(project), "--index", "2"])
        self.assertEqual(rc, 0)
        self.assertIn(str(derive_proposal(PROGRAM_ID, project, 2)[0]), out)

    def test_derive_requires_project(self) -> None:
        rc, _, err = _run(["derive", "milestone", "--index", "0"])
        self.assertEqual(rc, 1)
        self.assertIn("--project is required", err)

    def test_price(self) -> None:
        rc, out, _ = _run(["price", "--raised", "5", "--goal", "10"])
        self.assertEqual(rc, 0)
        self.assertIn("price: 51\n", out)
        self.assertIn("price_base_units: 51000000000", out)

    def test_price_rejects_negative(self) -> None:
        rc, _, err = _run(["price", "--raised", "-1", "--goal", "10"])
        self.assertEqual(rc, 1)
        self.assertIn("error:", err)

    def test_curve_csv(self) -> None:
        rc, out, _ = _run(["curve", "--goal", "10", "--steps", "2"])
        self.assertEqual(rc, 0)
        self.assertEqual(out.splitlines(), ["raised,price", "0,1", "5,51", "10,101"])

    def test_decode(self) -> None:
        rc, out, _ = _run(["decode", "0x0803"])
        self.assertEqual(rc, 0)
        self.assertIn("CompleteMilestone (opcode 8)", out)
        self.assertIn("milestone_id: 3", out)

    def test_decode_rejects_bad_hex(self) -> None:
        rc, _, err = _run(["decode", "zz"])
        self.assertEqual(rc, 1)
        self.assertIn("must be hex", err)

    def test_config_show(self) -> None:
        rc, out, _ = _run(["config", "show"])
        self.assertEqual(rc, 0)
        self.assertIn(f"program_id: {PROGRAM_ID}", out)


class ConfigInitTests(unittest.TestCase):
    def test_writes_and_refuses_overwrite(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            out_path = Path(td) / "unicorn.toml"
            with patch("unicornfactory.config.load_solana_cli_config", return_value={}), patch.dict(
                "os.environ", {}, clear=True
            ):
                rc, out, _ = _run(["--cluster", "localnet", "config", "init", "--out", str(out_path)])
                self.assertEqual(rc, 0)
                self.assertIn("Wrote config file", out)
                self.assertIn("http://127.0.0.1:8899", out_path.read_text())
                rc, _, err = _run(["config", "init", "--out", str(out_path)])
                self.assertEqual(rc, 1)
                self.assertIn("already exists", err)

    def test_missing_config_file(self) -> None:
        rc, _, err = _run(["--config", "/nonexistent/unicorn.toml", "config", "show"])
        self.assertEqual(rc, 1)
        self.assertIn("Config file not found", err)


class NetworkCommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ledger = FakeLedger()
        self.signer = Keypair()
        config = ClientConfig()
        patchers = [
            patch("unicornfactory.cli.load_config", return_value=config),
            patch.object(FundingClient, "from_config", side_effect=self._client),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)

    def _client(self, config: ClientConfig) -> FundingClient:
        return FundingClient(self.ledger, config, signer=self.signer, clock=self.ledger.clock)

    def test_project_lifecycle(self) -> None:
        rc, out, _ = _run(["project", "init", "--name", "Unicorn", "--symbol", "UNI", "--goal", "10"])
        self.assertEqual(rc, 0)
        self.assertIn("Signature: sig1", out)
        project = str(derive_project(PROGRAM_ID, self.signer.pubkey())[0])

        rc, out, _ = _run(["buy", "--project", project, "--amount", "5"])
        self.assertEqual(rc, 0)
        self.assertIn("total_raised: 5", out)

        rc, out, _ = _run(["project", "show"])
        self.assertEqual(rc, 0)
        self.assertIn("name: Unicorn", out)
        self.assertIn("curve_price: 51 (ok)", out)

        rc, out, _ = _run(["milestone", "add", "--project", project, "--title", "Alpha", "--amount", "2"])
        self.assertEqual(rc, 0)
        self.assertIn("Milestone 0: Alpha", out)

        rc, out, _ = _run(["proposal", "create", "--project", project, "--title", "Pay", "--milestone", "0"])
        self.assertEqual(rc, 0)
        self.assertIn("state: open", out)

        rc, out, _ = _run(["proposal", "vote", "--project", project, "--index", "0", "--yes"])
        self.assertEqual(rc, 0)
        self.assertIn("votes: 1 yes / 0 no", out)

        rc, out, _ = _run(["proposal", "list", "--project", project])
        self.assertEqual(rc, 0)
        self.assertIn("Proposal 0: Pay", out)

    def test_errors_exit_nonzero(self) -> None:
        project = str(Pubkey.new_unique())
        rc, _, err = _run(["sell", "--project", project, "--amount", "1"])
        self.assertEqual(rc, 1)
        self.assertIn("Account not found", err)

    def test_empty_lists(self) -> None:
        _run(["project", "init", "--name", "Unicorn", "--symbol", "UNI", "--goal", "10"])
        project = str(derive_project(PROGRAM_ID, self.signer.pubkey())[0])
        rc, out, _ = _run(["milestone", "list", "--project", project])
        self.assertEqual(rc, 0)
        self.assertIn("No milestones", out)


if __name__ == "__main__":
    unittest.main()
