"""Tests for the charger emulator command line."""

import pytest

from voltlink.emulator import ChargerEmulator, build_parser, main
from voltlink.models import ChargingSession, DeviceActivity


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "emulator.db")


@pytest.mark.unit
class TestEmulatorCommands:
    """Test each emulator subcommand."""

    async def test_provision(self, db_path, capsys):
        assert await main(["--db", db_path, "provision", "EMT-0001"]) == 0

        out = capsys.readouterr().out
        assert "[SUCCESS] Device EMT-0001 ready with ID" in out
        assert "[DONE]" in out

    async def test_provision_twice_keeps_id(self, db_path):
        async with ChargerEmulator(db_path) as emulator:
            first = await emulator.provision("EMT-0001")
            second = await emulator.provision("EMT-0001")

        assert first.id == second.id
        assert first.name == "Virtual Wallbox EMT-0001"

    async def test_set_power(self, db_path, capsys):
        await main(["--db", db_path, "provision", "EMT-0001"])

        assert await main(["--db", db_path, "set-power", "EMT-0001", "150"]) == 0

        assert '"charging"' in capsys.readouterr().out
        async with ChargerEmulator(db_path) as emulator:
            assert await emulator.registry.get_activity("EMT-0001") == DeviceActivity.CHARGING

    async def test_overheating(self, db_path, capsys):
        await main(["--db", db_path, "provision", "EMT-0001"])

        assert await main(["--db", db_path, "set-temp", "EMT-0001", "65"]) == 0

        assert "[WARNING]" in capsys.readouterr().out

    async def test_unknown_device(self, db_path, capsys):
        assert await main(["--db", db_path, "set-power", "NOPE", "100"]) == 1

        assert "[ERROR] Device NOPE not found" in capsys.readouterr().err

    async def test_set_final_energy_without_session(self, db_path, capsys):
        await main(["--db", db_path, "provision", "EMT-0001"])

        assert await main(["--db", db_path, "set-final-energy", "EMT-0001", "12.5", "7200"]) == 0

        assert "No active session found to update" in capsys.readouterr().out

    async def test_set_final_energy(self, db_path):
        async with ChargerEmulator(db_path) as emulator:
            await emulator.provision("EMT-0001")
            session = await emulator.session_repo.create(ChargingSession(serial="EMT-0001"))

        assert await main(["--db", db_path, "set-final-energy", "EMT-0001", "12.5", "7200"]) == 0

        async with ChargerEmulator(db_path) as emulator:
            stored = await emulator.session_repo.get_by_id(session.id)
        assert stored.energy_kwh == 12.5
        assert stored.power_peak_w == 7200
        assert stored.cost == pytest.approx(3.75)

    def test_subcommand_required(self, db_path):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--db", db_path])
