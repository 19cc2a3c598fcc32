# visualslam

Geometric building blocks for feature-based visual SLAM, written with numpy.

## What is in the package

- `visualslam.initializer`: monocular two-view initialization.
  `Initializer` estimates a homography and a fundamental matrix with RANSAC
  over the same minimal sets of eight matches. It picks one model by the ratio
  of their scores and recovers the relative pose with the triangulated points.
  The result is a `Reconstruction` with the fields `rotation`, `translation`,
  `points` (one row per reference keypoint) and `triangulated` (flags for the
  points seen with enough parallax). The lower-level steps are public too:
  `check_homography`, `check_fundamental`, `check_rt`, `reconstruct_h` and
  `reconstruct_f`.
- `visualslam.epipolar`: `normalize`, `compute_h21`, `compute_f21`,
  `triangulate` and `decompose_e`.
- `visualslam.camera`: the `KeyPoint` dataclass and the `Camera` dataclass.
  `Camera` is a pinhole model with radial-tangential distortion, undistorted
  image bounds and a feature grid. The module also has the functions
  `undistort_points` and `compute_image_bounds`.
- `visualslam.frame`: `Frame` holds the keypoints and descriptors of one
  image and assigns them to the camera grid. Its methods are:
  - `features_in_area` for a square window search, optionally limited to a
    range of pyramid levels;
  - `set_pose`;
  - `compute_stereo_from_rgbd` for depth from a registered depth map;
  - `compute_stereo_matches` for row-wise stereo matching with patch
    correlation and parabola sub-pixel refinement;
  - `unproject_stereo` for back-projecting a keypoint to world coordinates.
- `visualslam.converter`: `to_descriptor_vector`,
  `pose_to_rotation_translation`, `se3_to_matrix`, `sim3_to_matrix` and
  `to_quaternion` (returned as `[x, y, z, w]`).
- `visualslam.descriptors`: `descriptor_distance`, the Hamming distance
  between two binary descriptors.
- `visualslam.monocular_datasets`: `load_euroc_mono`, `load_kitti_mono` and
  `load_tum_mono` read image lists and timestamps. `frame_delay` gives the
  wait needed to replay a sequence in real time. `tracking_statistics`
  returns a `TrackingStatistics(median, mean)`.
- `visualslam.stereo_datasets`: `load_tum_rgbd`, `load_euroc_stereo` and
  `load_kitti_stereo`.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Example: two-view initialization

```python
import numpy as np
from visualslam.initializer import Initializer

K = np.array([[500.0, 0, 320], [0, 500.0, 240], [0, 0, 1]])

# reference_points and current_points: (N, 2) arrays of undistorted pixels.
# matches12[i] is the index in current_points matched to reference point i,
# or a negative value when there is no match.
initializer = Initializer(reference_points, K, sigma=1.0, iterations=200)
result = initializer.initialize(current_points, matches12, seed=0)
if result is not None:
    print(result.rotation, result.translation)
    print(sum(result.triangulated), "points triangulated")
```

`initialize` raises `ValueError` when there are fewer than eight matches. It
returns `None` when neither model gives a reliable reconstruction.

## Example: a frame and its grid

```python
import numpy as np
from visualslam.camera import Camera, KeyPoint
from visualslam.frame import Frame

camera = Camera(fx=500.0, fy=500.0, cx=320.0, cy=240.0, width=640, height=480)
keypoints = [KeyPoint(100.0, 120.0), KeyPoint(400.0, 300.0)]
descriptors = np.zeros((2, 32), dtype=np.uint8)

frame = Frame(keypoints, descriptors, camera)
print(frame.features_in_area(100.0, 120.0, 5.0))  # [0]
```

## Example: loading a KITTI sequence

```python
from visualslam.monocular_datasets import load_kitti_mono

images, timestamps = load_kitti_mono("/data/kitti/sequences/00")
print(len(images), "images")
```

## What the package does not do

This is a library of geometric parts, not a running SLAM system. It has:

- no command-line program;
- no image reading or ORB feature extraction (keypoints, descriptors and
  image pyramids must be supplied as arrays);
- no tracking, local mapping, loop closing or bundle adjustment;
- no map storage or place-recognition vocabulary;
- no viewer, no drawing of frames, and no saving of trajectories.