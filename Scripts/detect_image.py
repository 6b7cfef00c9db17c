import argparse
import logging
from pathlib import Path

import cv2

from yolo_edge import YoloPostConfig, draw_detections, load_detector, load_detector_from_profile, load_detector_profile


def main() -> int:
    parser = argparse.ArgumentParser(description="Run YOLO detection on an image or video and draw the results.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    parser.add_argument("--profile", default=None, help="JSON detector profile (overrides model/threshold flags).")
    parser.add_argument("--model", default="Models/yolo11n.onnx", help="Path to a YOLO ONNX model.")
    parser.add_argument("--metadata", default="Models/metadata.yaml", help="Path to the exported metadata.yaml.")
    parser.add_argument("--conf", type=float, default=0.5, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.3, help="IoU threshold for NMS.")
    parser.add_argument("--max-results", type=int, default=3, help="Maximum detections per frame.")
    parser.add_argument("--per-class-nms", action="store_true", help="Run NMS per class instead of class-agnostic.")
    parser.add_argument("--threads", type=int, default=2, help="ONNX Runtime intra-op threads.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--out", default=None, help="Optional output path (image or video) to save the visualization.")
    parser.add_argument("--every", type=int, default=1, help="Process every Nth frame for video.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = no limit).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.profile:
        detector = load_detector_from_profile(load_detector_profile(Path(args.profile)))
    else:
        onnx_providers = None
        if args.onnx_providers:
            onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]
        detector = load_detector(
            args.model,
            args.metadata,
            post_cfg=YoloPostConfig(
                confidence_threshold=args.conf,
                iou_threshold=args.iou,
                max_results=args.max_results,
                class_agnostic_nms=not args.per_class_nms,
            ),
            providers=onnx_providers,
            num_threads=args.threads,
        )

    with detector:
        if args.image is not None:
            img = cv2.imread(args.image)
            if img is None:
                raise FileNotFoundError(f"Could not read image at path: {args.image}")

            result = detector.detect(img)
            vis = draw_detections(img, result.detections)
            if args.out:
                ok = cv2.imwrite(args.out, vis)
                if not ok:
                    raise RuntimeError(f"Failed to write output image: {args.out}")

            if args.show:
                cv2.imshow("detections", vis)
                cv2.waitKey(0)
                cv2.destroyAllWindows()

            print(f"{len(result)} detections in {result.inference_time_ms:.1f}ms")
            for det in result.detections:
                print(det.label, f"{det.confidence:.3f}", det.as_xyxy())
            return 0

        if args.every < 1:
            raise ValueError("--every must be >= 1")
        if args.max_frames < 0:
            raise ValueError("--max-frames must be >= 0")

        cap = cv2.VideoCapture(args.video)
        if not cap.isOpened():
            raise FileNotFoundError(f"Could not open video: {args.video}")

        writer = None
        frame_idx = 0
        processed = 0
        try:
            while True:
                ok, frame = cap.read()
                if not ok or frame is None:
                    break

                frame_idx += 1
                if (frame_idx - 1) % args.every != 0:
                    continue

                result = detector.detect(frame)
                vis = draw_detections(frame, result.detections)

                if args.out and writer is None:
                    fps = cap.get(cv2.CAP_PROP_FPS)
                    if fps is None or fps <= 0:
                        fps = 30.0
                    h, w = vis.shape[:2]
                    fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                    writer = cv2.VideoWriter(args.out, fourcc, fps, (w, h))
                    if not writer.isOpened():
                        raise RuntimeError(f"Failed to open video writer: {args.out}")

                if writer is not None:
                    writer.write(vis)

                if args.show:
                    cv2.imshow("detections", vis)
                    key = cv2.waitKey(1) & 0xFF
                    if key in (27, ord("q")):
                        break

                processed += 1
                if args.max_frames and processed >= args.max_frames:
                    break
        finally:
            cap.release()
            if writer is not None:
                writer.release()
            if args.show:
                cv2.destroyAllWindows()

        print(f"Processed {processed} frames")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
