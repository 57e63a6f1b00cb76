"""
# Gallery Service

Image gallery operations on a Post: add, delete, rotate and refresh.

Each Post's gallery lives in `GALLERY_ROOT/<blogId>/<postId>/` and is served
from `GALLERY_URL_PREFIX/<blogId>/<postId>/`.

## Locking

Every operation rewrites the Post's whole image collection, so operations on one
Post are serialized with a per-Post lock held across load, mutate and save. The
per-image lock is taken inside it, since a derivative set spans several files
that are not written atomically. Removing a Post's gallery directory takes the
same per-Post lock.

## Failure Rules

| Operation | Files | Record | On failure |
|-----------|-------|--------|------------|
| add | source copy + derivatives | image appended | a copy or pipeline failure removes this run's files and re-raises; a failed save after files were written raises `DivergenceError` |
| delete | every `<stem>*` file | image removed | file removal failure aborts before the record is touched; a failed save after files were removed raises `DivergenceError` |
| rotate / refresh | source and/or derivatives rewritten | urls updated | a pipeline failure leaves the current files and urls untouched; a failed save raises `DivergenceError` |
"""

import asyncio
import glob
import shutil
from pathlib import Path
from typing import List, Optional, Tuple, Union

from blog_store.config import settings
from blog_store.exceptions import (
    DivergenceError,
    ExternalServiceError,
    ImageProcessingError,
    NotFoundError,
    ValidationError,
)
from blog_store.managers.logging_manager import LoggerLike, get_logger
from blog_store.models.blog_models import Blog, DeleteImageResult, Post
from blog_store.models.image_models import Gallery, Image
from blog_store.services.image_pipeline import ImageDerivativePipeline
from blog_store.services.post_service import PostLifecycleManager
from blog_store.utils.keyed_lock import KeyedLock


class GalleryService:
    """Keeps a Post's image records and its gallery directory in step."""

    def __init__(
        self,
        posts: PostLifecycleManager,
        pipeline: Optional[ImageDerivativePipeline] = None,
        root: Optional[Union[str, Path]] = None,
        url_prefix: Optional[str] = None,
        locks: Optional[KeyedLock] = None,
        logger: Optional[LoggerLike] = None,
    ):
        self.posts = posts
        self.pipeline = pipeline or ImageDerivativePipeline()
        self.root = Path(root or settings.GALLERY_ROOT)
        self.url_prefix = url_prefix or settings.GALLERY_URL_PREFIX
        self.locks = locks or KeyedLock()
        self.logger = logger or get_logger(prefix="[Gallery]")

    def blog_directory(self, blog: Blog) -> Path:
        return self.root / str(blog.id)

    def gallery_for(self, blog: Blog, post_id: str) -> Gallery:
        prefix = self.url_prefix.rstrip("/")
        return Gallery(
            directory=self.blog_directory(blog) / str(post_id),
            url_prefix=f"{prefix}/{blog.id}/{post_id}",
        )

    @staticmethod
    def _post_key(gallery: Gallery) -> Tuple[str, str]:
        return ("post", str(gallery.directory))

    @staticmethod
    def _image_key(gallery: Gallery, name: str) -> Tuple[str, str, str]:
        return ("image", str(gallery.directory), name)

    @staticmethod
    def _require_name(name: Optional[str]) -> str:
        if not name:
            raise ValidationError("name", "An image name is required")
        return name

    async def _load_image(self, blog: Blog, post_id: str, name: str) -> Tuple[Post, Image]:
        post = await self.posts.get(blog, post_id)
        image = post.find_image(name)
        if image is None:
            raise NotFoundError("image", name)
        return post, image

    async def _save(self, blog: Blog, post: Post, operation: str, touched: List[str]) -> None:
        try:
            await self.posts.save_images(blog, post)
        except (ExternalServiceError, NotFoundError) as e:
            self.logger.error(
                "%s changed %d file(s) for post %s but the record was not saved: %s",
                operation,
                len(touched),
                post.id,
                e,
                exc_info=True,
            )
            raise DivergenceError(operation, touched, e) from e

    async def _remove_quietly(self, path: Path) -> None:
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            self.logger.warning("Could not remove %s: %s", path, e)

    async def add_image(self, blog: Blog, post_id: str, source_path: Union[str, Path]) -> Image:
        """
        Add the file at `source_path` to the Post's gallery.

        The file is copied into the gallery directory (unless it already lives
        there), metadata is extracted, derivatives are generated and the new
        Image record is appended to the Post.

        Raises:
            ValidationError: No file name, or the name is already in the gallery.
            ExternalServiceError: The file could not be copied into the gallery.
            ImageProcessingError: The derivative pipeline failed; nothing is kept.
            DivergenceError: Files were written but the Post could not be saved.
        """
        source = Path(source_path)
        name = self._require_name(source.name)
        gallery = self.gallery_for(blog, post_id)

        async with self.locks.hold(self._post_key(gallery)), self.locks.hold(self._image_key(gallery, name)):
            post = await self.posts.get(blog, post_id)
            if post.find_image(name) is not None:
                raise ValidationError("name", f"Image '{name}' is already in the gallery")

            target = gallery.path_for(name)
            copied = False
            if source.resolve() != target.resolve():
                if not source.is_file():
                    raise ImageProcessingError(name, "read", FileNotFoundError(str(source)))
                try:
                    await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
                    await asyncio.to_thread(shutil.copy2, source, target)
                except OSError as e:
                    self.logger.error("Could not copy %s into %s: %s", source, gallery.directory, e, exc_info=True)
                    await self._remove_quietly(target)
                    raise ExternalServiceError("filesystem", "copy image", e) from e
                copied = True

            image = Image(name=name)
            try:
                derivatives = await self.pipeline.add_image(gallery, image)
            except ImageProcessingError:
                if copied:
                    await self._remove_quietly(target)
                raise

            written = ([str(target)] if copied else []) + derivatives.files
            post.images.append(image)
            await self._save(blog, post, "add_image", written)
            self.logger.info("Added image %s to post %s (%d files)", name, post.id, len(written))
            return image

    async def delete_image(self, blog: Blog, post_id: str, name: str) -> DeleteImageResult:
        """
        Remove an image and every `<stem>*` file from the gallery.

        An unknown name is not an error: the result has `found=False`.

        Raises:
            ValidationError: `name` is empty.
            ExternalServiceError: A file could not be removed; the record is untouched.
            DivergenceError: The files were removed but the Post could not be saved.
        """
        name = self._require_name(name)
        gallery = self.gallery_for(blog, post_id)

        async with self.locks.hold(self._post_key(gallery)), self.locks.hold(self._image_key(gallery, name)):
            post = await self.posts.get(blog, post_id)
            image = post.find_image(name)
            if image is None:
                self.logger.info("Image %s not found in post %s", name, post.id)
                return DeleteImageResult(name=name, found=False)

            try:
                removed = await asyncio.to_thread(_remove_stem_files, gallery.directory, image.stem)
            except OSError as e:
                self.logger.error("Failed to remove files of %s: %s", name, e, exc_info=True)
                raise ExternalServiceError("filesystem", "delete image", e) from e

            post.images = [entry for entry in post.images if entry.name != name]
            await self._save(blog, post, "delete_image", removed)
            self.logger.info("Deleted image %s from post %s (%d files)", name, post.id, len(removed))
            return DeleteImageResult(name=name, found=True, removed_files=removed)

    async def rotate_image(self, blog: Blog, post_id: str, name: str, degrees: int) -> Image:
        """Rotate the source image in place and regenerate every derivative."""
        name = self._require_name(name)
        gallery = self.gallery_for(blog, post_id)

        async with self.locks.hold(self._post_key(gallery)), self.locks.hold(self._image_key(gallery, name)):
            post, image = await self._load_image(blog, post_id, name)
            derivatives = await self.pipeline.rotate(gallery, image, degrees)
            await self._save(blog, post, "rotate_image", [str(gallery.path_for(name))] + derivatives.files)
            return image

    async def refresh_image(self, blog: Blog, post_id: str, name: str, force_thumbnail: bool = False) -> Image:
        """Regenerate the derivatives of a known image."""
        name = self._require_name(name)
        gallery = self.gallery_for(blog, post_id)

        async with self.locks.hold(self._post_key(gallery)), self.locks.hold(self._image_key(gallery, name)):
            post, image = await self._load_image(blog, post_id, name)
            derivatives = await self.pipeline.refresh(gallery, image, force_regenerate_thumbnail=force_thumbnail)
            await self._save(blog, post, "refresh_image", derivatives.files)
            return image

    async def remove_post_gallery(self, blog: Blog, post_id: str) -> bool:
        """Remove a Post's gallery directory once no image operation holds it."""
        gallery = self.gallery_for(blog, post_id)
        async with self.locks.hold(self._post_key(gallery)):
            return await self.remove_directory(gallery.directory)

    async def remove_directory(self, path: Path) -> bool:
        """
        Recursively remove a gallery directory.

        Returns:
            bool: `True` if the directory was removed or did not exist.
        """
        if not path.exists():
            return True
        await asyncio.to_thread(shutil.rmtree, path)
        self.logger.info("Removed gallery directory %s", path)
        return True


def _remove_stem_files(directory: Path, stem: str) -> List[str]:
    removed = []
    if not directory.is_dir():
        return removed
    for path in sorted(directory.glob(f"{glob.escape(stem)}*")):
        if path.is_file():
            path.unlink()
            removed.append(str(path))
    return removed
