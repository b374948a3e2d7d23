# babble_trainer

Tools for preparing eye-tracking training data from binary capture files.

The package reads capture files that hold pairs of JPEG eye images with
gaze and eyelid labels, can filter out glitched frames, lines the image
streams up with the label stream, and packs windows of frames into
NumPy arrays ready for a model.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `babble_trainer.loader`: `FileReader.read_capture_file(filename,
  do_glitch_detection, equalize_histogram, exclude_after,
  exclude_before)` parses a capture file into `left_eye_frames`,
  `right_eye_frames` and `label_frames`, dictionaries keyed by
  timestamp, and counts `raw_frames`, `skipped_frames` and
  `total_bad_frames`. Each record is a little-endian `FileData` header
  (read with `FileData.from_stream`) followed by the left and right JPEG
  bytes; reading stops at end of file or at a negative or over-10-MiB
  image length. `decode_jpeg` decodes a frame to an 8-bit grayscale
  array, optionally equalising the HSV value channel first, and raises
  `ValueError` on data it cannot decode. `image_to_tensor` scales a
  frame to `float32` values between 0 and 1.
- `babble_trainer.corruption_detector`: `FastCorruptionDetector` flags
  frames whose row pattern metric (`calculate_row_pattern_consistency_image`
  for 8-bit frames, `calculate_row_pattern_consistency_tensor` for 0-1
  frames) exceeds its threshold. With adaptation on, once 20 values have
  been seen the threshold becomes the median plus three times the median
  absolute deviation of all values seen, kept between half and three
  times the base threshold. `process_frame_pair` judges both eyes and
  `stats()` returns a `CorruptionDetectionStats` snapshot.
- `babble_trainer.frame_correlator`: `align_frames(reader)` estimates
  the time offset between each eye stream and the labels by correlating
  frame intervals (`find_pattern_based_offset`, using
  `pearson_correlation`), pairs each label with its closest eye frames,
  resolves conflicts best match first, and returns `AlignedFrame`
  objects sorted by timestamp.
- `babble_trainer.batcher`: `DatasetInfo.from_frames` gathers the gaze
  ranges, `to_windowed_frame` turns four consecutive aligned frames into
  one `WindowedFrame` (label and timestamp from the newest), and
  `EyeDataBatcher.batch` builds an `EyeDataBatch` with `images` of shape
  `(batch, 8, width, height)` (left and right channels interleaved, left
  on even indices) and `targets` of shape `(batch, 6)`. It raises
  `ValueError` for an empty list of items.

## Example

```python
from babble_trainer.loader import FileReader
from babble_trainer.frame_correlator import align_frames
from babble_trainer.batcher import DatasetInfo, EyeDataBatcher, to_windowed_frame

reader = FileReader()
reader.read_capture_file("user_cal.bin", False, True, 0, 0)
frames = align_frames(reader)

windows = [to_windowed_frame(frames[i:i + 4]) for i in range(len(frames) - 3)]
batcher = EyeDataBatcher(training=False, dataset_info=DatasetInfo.from_frames(frames))
batch = batcher.batch(windows[:32])
print(batch.images.shape, batch.targets.shape)
```

Targets hold, for each eye, normalised pitch, normalised yaw and a
closed flag. Gaze angles map from -45..45 degrees onto 0..1, clipped. A
closed eye (lid value below 0.5) gives `0.5, 0.5, 1.0`.

## What this package does not do

It prepares data only. It has no model, no training loop, no
checkpoint saving and no command-line program; batches are plain NumPy
arrays for you to feed to a model of your own. The `training` flag of
`EyeDataBatcher` does not change the batches: no augmentation is
applied.