# picamkit

Building blocks for the back end of a camera capture pipeline. picamkit takes
frame buffers and writes them out as still images. It can also pass encoded
video frames on to an output, including an in-memory ring buffer that is saved
when it is closed. Frames can be encoded as Motion-JPEG or passed through
unchanged.

## Installation

```
pip install picamkit
```

To run the test suite:

```
pip install "picamkit[test]"
pytest
```

## Frame descriptions

`picamkit.formats` provides the types shared by the rest of the package:

- `PixelFormat` lists the supported formats: RGB, YUV and raw Bayer.
- `StreamInfo` holds a frame's `width`, `height`, `stride`, `pixel_format` and
  an optional `colour_space`.
- `open_output(filename)` is a context manager that opens a file for binary
  writing. With `"-"` it writes to standard output and leaves it open.

Frame data is passed as a sequence of planes. Each plane is any object that
supports the buffer protocol, such as `bytes`, `bytearray` or a `memoryview`.

## Still images

Each saver checks the frame's pixel format and raises `ValueError` if the
format is wrong or the buffer is too small.

- `picamkit.bmp`: `encode_bmp(mem, info)` returns the bytes of a 24-bit
  top-down BMP built from an `RGB888` frame. `bmp_save(mem, info, filename)`
  writes that file.
- `picamkit.png`: `encode_png(mem, info)` and `png_save(mem, info, filename)`
  turn a `BGR888` frame into a PNG, using fast compression.
- `picamkit.yuv`: `encode_yuv(mem, info, encoding)` and
  `yuv_save(mem, info, filename, encoding)` write raw data with stride padding
  removed, as follows:
  - `YUV420` and `YUYV` frames are written as planar YUV420 (encoding `"yuv420"`).
  - `RGB888`, `BGR888`, `RGB161616` and `BGR161616` frames are written as packed
    rows (encoding `"rgb24"` or `"rgb48"`).
- `picamkit.jpeg`:
  - `encode_jpeg(mem, info, metadata, cam_model, options)` and
    `jpeg_save(mem, info, metadata, filename, cam_model, options)` build a JPEG
    from a `YUV420` or `YUYV` frame. The file has an EXIF block and, if
    `thumb_quality` is non-zero, an embedded thumbnail.
  - The EXIF block holds the make, model, software and date. It also takes the
    exposure time, ISO and subject distance from the `ExposureTime`,
    `AnalogueGain`/`DigitalGain` and `LensPosition` keys of `metadata`.
  - `JpegOptions` holds the quality, restart interval, thumbnail size and
    quality, and extra EXIF items.
  - `parse_exif_item("IFD0.Artist=someone")` parses one extra EXIF item.
    `ExifIfd` names the directories such an item can go in: `IFD0`, `IFD1`,
    `EXIF`, `GPS` and `EINT`.
  - `yuv_to_jpeg` encodes a frame at any output size.
  - `create_exif_data` returns the EXIF block and the thumbnail.
- `picamkit.dng`: `dng_save(mem, info, metadata, filename, cam_model, roi)`
  writes a raw Bayer frame as a DNG with a small greyscale thumbnail.
  - It accepts CSI-2 packed 10- and 12-bit data, unpacked 10-, 12- and 16-bit
    data, and the compressed raw formats.
  - Black levels, exposure, gain, colour gains, colour matrix and lens position
    are read from `metadata` when present; otherwise defaults are used.
  - `Roi` selects a crop as fractions of the image size.
  - The unpacking helpers (`unpack_10bit`, `unpack_12bit`, `unpack_16bit`,
    `uncompress`, `decode_sub_block`, `dequantize`, `postprocess`) and the 3x3
    `Matrix` type are public.
  - `bayer_format_for` maps a `PixelFormat` to its `BayerFormat`.

## Video outputs

- `picamkit.output`: `Output` is the base class and can be used as a context
  manager. It takes an `OutputOptions`. Its `output_ready` method:
  - waits for a keyframe before it starts and again after a resume;
  - keeps timestamps continuous across a pause;
  - writes a timestamp file when `save_pts` is set;
  - writes one metadata record per frame when `metadata` is set, as `txt` or
    `json` (`"-"` writes to standard output). Metadata is queued with
    `metadata_ready`.

  `signal()` toggles between paused and running. The base class discards the
  frame data itself; subclasses override `output_buffer`. The helpers
  `start_metadata_output`, `write_metadata` and `stop_metadata_output` are
  public. `Flag` marks keyframes and restarts.
- `picamkit.circular_output`: `CircularOutput` keeps the most recent frames in
  a `CircularBuffer` of `options.circular` megabytes. When it is closed it
  writes them to `options.output` (`"-"` for standard output), starting at the
  first keyframe still in the buffer.

## Encoders

- `picamkit.encoder`: `Encoder` is the abstract base class. It is configured
  with `EncoderOptions` (`codec`, `quality`, `platform`). It reports back
  through two attributes:
  - `input_done_callback()` is called when the encoder has finished with an
    input buffer.
  - `output_ready_callback(mem, timestamp_us, keyframe)` is called with each
    encoded buffer.

  Encoders are context managers. `close()` finishes queued work and re-raises
  any error a callback raised.
- `picamkit.null_encoder`: `NullEncoder` hands every frame back unchanged,
  marked as a keyframe.
- `picamkit.mjpeg_encoder`: `MjpegEncoder` encodes `YUV420` or `YUYV` frames
  as JPEG on four worker threads and delivers them in input order.
- `picamkit.encoder_factory`: `create_encoder(options, info)` picks the encoder
  from `options.codec`, ignoring case:
  - `yuv420` gives a `NullEncoder`;
  - `mjpeg` gives a `MjpegEncoder`;
  - `h264` raises `RuntimeError`;
  - any other name raises `ValueError`.

## What it does not do

- There is no H.264 or other hardware or library video codec; only
  pass-through and Motion-JPEG encoding.
- There is no network output.
- There is no output that writes each frame to a plain or segmented file, and
  no automatic choice of output from the options. Use `Output`,
  `CircularOutput` or your own `Output` subclass directly.
- There is no command-line program and no camera capture; frames must be
  supplied by the caller.

## Example

```python
from picamkit.formats import PixelFormat, StreamInfo
from picamkit.bmp import bmp_save

info = StreamInfo(width=4, height=2, stride=12, pixel_format=PixelFormat.RGB888)
frame = bytes(range(24))
bmp_save([frame], info, "frame.bmp")
```