import plancal.commands.show_month as show_month


class TestShowMonth:
    def test_online(self, cli_plancal, march_plan, capsys):
        show_month.run(["2025-03"])
        out = capsys.readouterr().out
        assert "Mon" in out and "Sun" in out
        assert "(24)" in out  # February days of the first grid week
        assert "r1" in out
        assert "X|sauna" in out
        assert "Easy run" in out

    def test_offline_uses_cache(self, cli_plancal, march_plan, capsys):
        show_month.run(["2025-03"])
        capsys.readouterr()
        calls = len(march_plan.gets)

        show_month.run(["2025-03", "--offline"])
        out = capsys.readouterr().out
        assert "r1" in out
        assert len(march_plan.gets) == calls

    def test_empty_month(self, cli_plancal, fake_transport, signed_in, capsys):
        show_month.run(["2025-03"])
        assert "No planned workouts." in capsys.readouterr().out
