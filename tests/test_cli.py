"""Tests for the conversion program."""

import json
import math

import pytest

from mlxthermal.calibration import uncertain
from mlxthermal.cli import convert, main
from mlxthermal.errors import BadEEPROM, MLXThermalError


def _write_csv(path, rows):
    path.write_text("\n".join(",".join(str(w) for w in row) for row in rows) + "\n")
    return str(path)


def _run(capsys, *argv):
    code = main(list(argv))
    return code, capsys.readouterr()


class TestConvert:

    def test_full_cycle(self, ee_data, frame0, frame1):
        image = convert(ee_data, [frame0, frame1], emissivity=0.95, quantization_error=False)
        assert image.complete
        assert image.faults == []
        assert 30 < image.pixel(400) < 37

    def test_frames_run_in_order(self, ee_data, frame_factory):
        # The later sub-page 0 frame overwrites the earlier one
        frames = [frame_factory(0, raw=400), frame_factory(1), frame_factory(0)]
        image = convert(ee_data, frames, emissivity=0.95, quantization_error=False)
        reference = convert(ee_data, frames[1:], emissivity=0.95, quantization_error=False)
        assert image.values == reference.values

    def test_bad_pixel_correction(self, eeprom_factory, frame_factory):
        ee = eeprom_factory({0x40 + 100: 0x0423})
        counts = [40] * 768
        counts[100] = 4000
        frames = [frame_factory(0, pixels=counts), frame_factory(1, pixels=counts)]
        raw = convert(ee, frames, emissivity=0.95, quantization_error=False)
        corrected = convert(ee, frames, emissivity=0.95, quantization_error=False, correct=True)
        assert raw.pixel(100) > 100
        assert corrected.pixel(100) == pytest.approx(corrected.pixel(101), abs=1.0)

    def test_emissivity_distribution_sizes_the_sampler(self, ee_data, frame0, frame1):
        emissivity = uncertain.Substrate(samples=51, seed=2).uniform_dist(0.93, 0.97)
        image = convert(ee_data, [frame0, frame1], emissivity=emissivity)
        assert image.pixel(400).shape == (51,)

    def test_no_frames(self, ee_data):
        with pytest.raises(MLXThermalError):
            convert(ee_data, [])

    def test_bad_eeprom(self, eeprom_factory, frame0):
        with pytest.raises(BadEEPROM):
            convert(eeprom_factory({10: 0x0040}), [frame0])


class TestMain:

    def test_single_pixel_text(self, capsys, data_files):
        ee_path, raw_path = data_files
        code, out = _run(capsys, "-c", ee_path, "-i", raw_path, "-e", "0.95", "-q")
        assert code == 0
        assert "using emissivity = 0.950000" in out.out
        assert "Temperature of pixel 400:" in out.out

    def test_single_pixel_json(self, capsys, data_files):
        ee_path, raw_path = data_files
        code, out = _run(capsys, "-c", ee_path, "-i", raw_path, "-j", "-p", "10", "--samples", "51")
        assert code == 0
        document = json.loads(out.out)
        assert document["description"] == "MLX90640 Conversion Values."
        variable = document["variables"][0]
        assert variable["symbol"] == "temperature"
        assert len(variable["values"]) == 1
        assert 30 < variable["values"][0] < 37

    def test_all_temperatures_json(self, capsys, data_files):
        ee_path, raw_path = data_files
        code, out = _run(capsys, "-c", ee_path, "-i", raw_path, "-j", "-a", "-e", "0.95", "-q")
        assert code == 0
        values = json.loads(out.out)["variables"][0]["values"]
        assert len(values) == 768
        assert all(v is not None and math.isfinite(v) for v in values)

    def test_all_temperatures_text_and_time(self, capsys, data_files):
        ee_path, raw_path = data_files
        code, out = _run(capsys, "-c", ee_path, "-i", raw_path, "-a", "-t", "-e", "0.95", "-q", "-n", "2")
        assert code == 0
        lines = out.out.splitlines()
        assert len(lines[1].split()) == 32
        assert lines[-1].startswith("CPU time used:")

    def test_deterministic_substrate(self, capsys, data_files):
        ee_path, raw_path = data_files
        code, out = _run(capsys, "-c", ee_path, "-i", raw_path, "-j", "--samples", "0")
        assert code == 0
        code, reference = _run(capsys, "-c", ee_path, "-i", raw_path, "-j", "-e", "0.95", "-q")
        assert code == 0
        value = json.loads(out.out)["variables"][0]["values"][0]
        assert value == pytest.approx(json.loads(reference.out)["variables"][0]["values"][0], abs=1e-9)

    def test_single_sample_matches_midpoint(self, capsys, data_files):
        ee_path, raw_path = data_files
        code, out = _run(capsys, "-c", ee_path, "-i", raw_path, "-j", "--samples", "1")
        assert code == 0
        code, reference = _run(capsys, "-c", ee_path, "-i", raw_path, "-j", "--samples", "0")
        assert code == 0
        assert json.loads(out.out) == json.loads(reference.out)

    def test_missing_eeprom_file(self, capsys, tmp_path, data_files):
        _, raw_path = data_files
        code, out = _run(capsys, "-c", str(tmp_path / "absent.csv"), "-i", raw_path)
        assert code == 1
        assert "Error in reading sensor ee data" in out.err

    def test_empty_raw_file(self, capsys, tmp_path, data_files):
        ee_path, _ = data_files
        raw_path = tmp_path / "empty.csv"
        raw_path.write_text("")
        code, out = _run(capsys, "-c", ee_path, "-i", str(raw_path))
        assert code == 1
        assert "Error in reading sensor raw data" in out.err

    def test_bad_eeprom(self, capsys, tmp_path, eeprom_factory, frame0, frame1):
        ee_path = _write_csv(tmp_path / "ee.csv", [eeprom_factory({10: 0x0040})])
        raw_path = _write_csv(tmp_path / "raw.csv", [frame0, frame1])
        code, out = _run(capsys, "-c", ee_path, "-i", raw_path)
        assert code == 1
        assert "Error in extracting parameters from EE" in out.err

    @pytest.mark.parametrize("argv", [["-p", "768"], ["-p", "-1"], ["-e", "1.5"], ["-n", "0"], ["-e", "abc"]])
    def test_invalid_arguments(self, argv, data_files):
        ee_path, raw_path = data_files
        with pytest.raises(SystemExit) as exc:
            main(["-c", ee_path, "-i", raw_path] + argv)
        assert exc.value.code == 2

    def test_plot(self, capsys, tmp_path, data_files):
        ee_path, raw_path = data_files
        plot_path = tmp_path / "image.png"
        code, _ = _run(capsys, "-c", ee_path, "-i", raw_path, "--samples", "21", "--plot", str(plot_path))
        assert code == 0
        assert plot_path.exists()
        assert (tmp_path / "image-uncertainty.png").exists()
