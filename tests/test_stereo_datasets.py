import pytest

from visualslam.stereo_datasets import load_euroc_stereo, load_kitti_stereo, load_tum_rgbd


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_tum_rgbd_reads_associations(tmp_path):
    assoc = _write(
        tmp_path / "associate.txt",
        "1305031102.175304 rgb/1305031102.175304.png 1305031102.160407 depth/1305031102.160407.png\n"
        "\n"
        "1305031102.211214 rgb/1305031102.211214.png 1305031102.226738 depth/1305031102.226738.png\n",
    )
    rgb, depth, times = load_tum_rgbd(assoc)
    assert rgb == ["rgb/1305031102.175304.png", "rgb/1305031102.211214.png"]
    assert depth == ["depth/1305031102.160407.png", "depth/1305031102.226738.png"]
    assert times == pytest.approx([1305031102.175304, 1305031102.211214])


def test_tum_rgbd_lists_have_equal_length(tmp_path):
    lines = "".join(f"{i}.5 rgb/{i}.png {i}.6 depth/{i}.png\n" for i in range(7))
    rgb, depth, times = load_tum_rgbd(_write(tmp_path / "a.txt", lines))
    assert len(rgb) == len(depth) == len(times) == 7


def test_tum_rgbd_rejects_incomplete_line(tmp_path):
    assoc = _write(tmp_path / "a.txt", "1.0 rgb/1.png\n")
    with pytest.raises(ValueError):
        load_tum_rgbd(assoc)


def test_tum_rgbd_rejects_bad_timestamp(tmp_path):
    assoc = _write(tmp_path / "a.txt", "abc rgb/1.png 1.0 depth/1.png\n")
    with pytest.raises(ValueError):
        load_tum_rgbd(assoc)


def test_tum_rgbd_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_tum_rgbd(tmp_path / "missing.txt")


def test_euroc_stereo_paths_and_seconds(tmp_path):
    times = _write(tmp_path / "times.txt", "1403636579763555584\n1403636579813555456\n")
    left, right, stamps = load_euroc_stereo("cam0/data", "cam1/data", times)
    assert left == ["cam0/data/1403636579763555584.png", "cam0/data/1403636579813555456.png"]
    assert right == ["cam1/data/1403636579763555584.png", "cam1/data/1403636579813555456.png"]
    assert stamps[0] == pytest.approx(1403636579763555584 / 1e9)
    assert stamps[1] > stamps[0]


def test_euroc_stereo_skips_blank_lines(tmp_path):
    times = _write(tmp_path / "times.txt", "\n100\n\n200\n")
    left, right, stamps = load_euroc_stereo(tmp_path / "l", tmp_path / "r", times)
    assert len(left) == len(right) == len(stamps) == 2


def test_euroc_stereo_empty_file(tmp_path):
    times = _write(tmp_path / "times.txt", "")
    assert load_euroc_stereo("l", "r", times) == ([], [], [])


def test_kitti_stereo_numbered_images(tmp_path):
    _write(tmp_path / "times.txt", "0.000000e+00\n1.036070e-01\n2.072140e-01\n")
    left, right, stamps = load_kitti_stereo(tmp_path)
    root = str(tmp_path)
    assert left[0] == f"{root}/image_0/000000.png"
    assert right[2] == f"{root}/image_1/000002.png"
    assert stamps == pytest.approx([0.0, 0.103607, 0.207214])


def test_kitti_stereo_left_and_right_match(tmp_path):
    _write(tmp_path / "times.txt", "".join(f"{i * 0.1}\n" for i in range(12)))
    left, right, stamps = load_kitti_stereo(tmp_path)
    assert len(left) == len(right) == len(stamps) == 12
    for l_name, r_name in zip(left, right):
        assert l_name.replace("image_0", "image_1") == r_name


def test_kitti_stereo_missing_times(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_kitti_stereo(tmp_path)