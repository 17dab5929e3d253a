import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from stitchkit import cli
from stitchkit.config import Config
from stitchkit.palette import Palette, StitchColor, get_bundled_palette


def test_config_yaml_round_trip(tmp_path):
    config = Config()
    config.quantize.smoothing = 0.6
    config.extraction.iterations = 12
    config.selection.hue_bins = 8
    config.fill.seeds_per_tick = 500
    path = tmp_path / "nested" / "stitch.yaml"
    config.save_yaml(str(path))
    assert path.exists()

    loaded = Config.from_yaml(str(path))
    assert loaded.to_dict() == config.to_dict()
    assert loaded.config_file == str(path)


def test_config_overrides_and_missing_file(tmp_path):
    config = Config.from_yaml(str(tmp_path / "absent.yaml"), max_colors=12, smoothing=0.0,
                              verbose=True, seeds_per_tick=None)
    assert config.quantize.max_colors == 12
    assert config.quantize.smoothing == 0.0
    assert config.verbose
    assert config.fill.seeds_per_tick == 1800
    assert config.sampling.max_samples == 40000


def test_config_validation_rejects_bad_values(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("quantize:\n  smoothing: 1.5\n", encoding="utf-8")
    with pytest.raises(ValueError):
        Config.from_yaml(str(path))

    config = Config()
    config.extraction.min_colors = 1
    with pytest.raises(ValueError):
        config.validate()


def test_palette_csv_skips_invalid_rows(tmp_path, capsys):
    path = tmp_path / "threads.csv"
    path.write_text(
        "id,name,hex,family,code\n"
        "1,Black,#000000,Neutrals,310\n"
        "0,Reserved,#ffffff,Neutrals,\n"
        "abc,Broken,#123456,,\n"
        "1,Duplicate,#111111,,\n"
        "70000,Too Big,#222222,,\n"
        "2,Bad Hex,#12zz56,Reds,\n"
        "3,Red,#C7072E,Reds,321\n",
        encoding="utf-8",
    )
    palette = Palette.from_csv(str(path))
    assert palette.ids == [1, 2, 3]
    assert palette.get_color_by_code("321").hex == "#c7072e"
    assert not palette.get_color_by_id(2).is_valid
    assert palette.lab_array()[0].tolist() == [1, 3]
    assert palette.families() == ["Neutrals", "Reds"]
    assert capsys.readouterr().out.count("Warning: Skipping invalid palette entry") == 4

    with pytest.raises(FileNotFoundError):
        Palette.from_csv(str(tmp_path / "missing.csv"))


def test_palette_ids_are_validated():
    with pytest.raises(ValueError):
        StitchColor(0, "Empty", "#000000")
    with pytest.raises(ValueError):
        Palette([StitchColor(1, "A", "#000000"), StitchColor(1, "B", "#ffffff")])


def test_add_color_uses_next_id():
    palette = Palette([StitchColor(4, "A", "#000000"), StitchColor(9, "B", "#ffffff")])
    extended = palette.add_color("Mint", "#98ff98")
    assert extended.ids == [4, 9, 10]
    assert len(palette) == 2
    assert extended.export_to_dict()[10]['family'] == "Custom"


def test_bundled_palette_loads_once():
    palette = get_bundled_palette()
    assert palette is get_bundled_palette()
    assert len(palette) >= 30
    assert len(set(palette.ids)) == len(palette)
    assert all(color.is_valid for color in palette)
    assert palette.get_color_by_code("310").hex == "#000000"


def test_cli_convert_prints_usage(tmp_path, capsys):
    rgb = np.zeros((20, 20, 3), dtype=np.uint8)
    rgb[:, :10] = (199, 7, 46)
    rgb[:, 10:] = (255, 255, 255)
    image_path = tmp_path / "split.png"
    Image.fromarray(rgb).save(image_path)

    with pytest.raises(SystemExit) as exit_info:
        cli.main(["convert", str(image_path), "-W", "10", "-H", "10", "--max-colors", "4"])
    assert exit_info.value.code == 0
    out = capsys.readouterr().out
    assert "CONVERSION COMPLETE" in out
    assert "Stitched cells: 100 of 100" in out
    assert "321" in out


def test_cli_extract_and_validation(tmp_path, capsys):
    rgb = np.zeros((8, 8, 3), dtype=np.uint8)
    rgb[:4] = (0, 0, 0)
    rgb[4:] = (255, 255, 255)
    image_path = tmp_path / "bw.png"
    Image.fromarray(rgb).save(image_path)

    with pytest.raises(SystemExit) as exit_info:
        cli.main(["extract", str(image_path), "--colors", "2"])
    assert exit_info.value.code == 0
    out = capsys.readouterr().out
    assert "#000000" in out and "#ffffff" in out

    with pytest.raises(SystemExit) as exit_info:
        cli.main(["convert", str(image_path)])
    assert exit_info.value.code == 1

    with pytest.raises(SystemExit) as exit_info:
        cli.main(["extract", str(tmp_path / "nope.png")])
    assert exit_info.value.code == 1


def test_cli_lists_palette(capsys):
    cli.main(["--list-palette"])
    out = capsys.readouterr().out
    assert "PALETTE" in out
    assert "Snow White" in out
